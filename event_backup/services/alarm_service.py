# event_backup/services/alarm_service.py
"""
Alarm processing pipeline.

Synchronous mode (webhook): validate → enqueue with delay → acknowledge.
Deferred mode (queue):      credentials → enrich → store event JSON
                            → capture video → store video → summary event.

Only a capture that ends with no downloaded file escapes deferred mode, as
NoVideoDownloadedError. Any other capture failure leaves a metadata-only event.
"""

import base64
import binascii
import io
from datetime import datetime, timedelta, timezone
from typing import Optional

from PIL import Image

from event_backup.config import settings
from event_backup.schemas.alarm import AlarmEvent, Trigger
from event_backup.schemas.summary import SummaryEvent
from event_backup.services import storage_keys
from event_backup.services.video_capture import (
    CaptureFailed,
    CaptureNoVideo,
    CaptureTarget,
    cleanup_temp_file,
)
from event_backup.utils import responses
from event_backup.utils.errors import (
    ConfigurationError,
    NoVideoDownloadedError,
    QueueError,
    StorageError,
    ValidationError,
)
from event_backup.utils.logger import get_logger

logger = get_logger(__name__)

THUMBNAIL_WIDTH = 320
SUMMARY_URL_EXPIRY_SECONDS = 24 * 3600


def validate(alarm: Optional[AlarmEvent]):
    """Raise ValidationError for a payload that must not reach storage."""
    if alarm is None:
        raise ValidationError(responses.ERROR_GENERAL)
    if not alarm.triggers:
        raise ValidationError(responses.ERROR_TRIGGERS)
    if not alarm.timestamp or alarm.timestamp <= 0:
        raise ValidationError("alarm timestamp must be a positive epoch-milliseconds value")


def decode_thumbnail(value: str) -> Optional[bytes]:
    """Accepts raw base64 or a data: URI. Returns None if it does not decode."""
    payload = value.split(",", 1)[1] if value.startswith("data:") and "," in value else value
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        return None


def make_thumbnail(png_bytes: bytes, width: int = THUMBNAIL_WIDTH) -> bytes:
    with Image.open(io.BytesIO(png_bytes)) as img:
        img = img.convert("RGB")
        height = max(1, int(img.height * width / img.width))
        img = img.resize((width, height))
        out = io.BytesIO()
        img.save(out, format="JPEG", quality=80)
    return out.getvalue()


class AlarmService:
    def __init__(self, object_store, queue_service, credentials_service,
                 device_registry, capture_orchestrator,
                 processing_delay: Optional[int] = None):
        self.object_store = object_store
        self.queue_service = queue_service
        self.credentials_service = credentials_service
        self.device_registry = device_registry
        self.capture = capture_orchestrator
        self.processing_delay = settings.max_queue_delay if processing_delay is None else processing_delay

    # ── Synchronous mode ───────────────────────────────────────────────────
    def enqueue_and_respond(self, alarm: Optional[AlarmEvent]) -> responses.ApiResponse:
        logger.info("[ALARM] Queueing alarm event for delayed processing")
        try:
            validate(alarm)
        except ValidationError as e:
            logger.warning(f"[ALARM] Rejected alarm: {e}")
            return responses.bad_request(str(e))

        if not self.queue_service.processing_queue_url:
            logger.error("[ALARM] AlarmProcessingQueueUrl is not configured")
            return responses.server_error_raw(responses.ERROR_QUEUE_CONFIG)

        trigger = alarm.first_trigger
        try:
            message_id = self.queue_service.enqueue_delayed(
                alarm.to_json(),
                self.processing_delay,
                event_id=trigger.eventId,
                device=trigger.device,
                timestamp=alarm.timestamp,
            )
        except (QueueError, ConfigurationError) as e:
            logger.error(f"[ALARM] Error queueing alarm for processing: {e}")
            return responses.server_error(f"Error queueing alarm for processing: {e}")

        eta = datetime.now(timezone.utc) + timedelta(seconds=self.processing_delay)
        return responses.ok({
            "msg": "Alarm event has been queued for processing",
            "eventId": trigger.eventId,
            "device": trigger.device,
            "processingDelay": self.processing_delay,
            "messageId": message_id,
            "estimatedProcessingTime": eta.strftime("%Y-%m-%d %H:%M:%S UTC"),
        })

    def process_alarm_sync(self, alarm: Optional[AlarmEvent]) -> responses.ApiResponse:
        """Webhook entry point. Never captures video inline."""
        return self.enqueue_and_respond(alarm)

    # ── Deferred mode ──────────────────────────────────────────────────────
    def enrich(self, alarm: AlarmEvent) -> Trigger:
        trigger = alarm.first_trigger
        trigger.date = storage_keys.iso_local(alarm.timestamp)
        trigger.deviceName = self.device_registry.resolve_device_name(trigger.device)
        event_key, video_key = storage_keys.derive_keys(trigger, alarm.timestamp)
        trigger.eventKey = storage_keys.basename(event_key)
        trigger.videoKey = video_key
        return trigger

    def process_alarm_deferred(self, alarm: AlarmEvent):
        """
        Raises NoVideoDownloadedError when capture produced no file.
        Configuration and storage errors also propagate; other capture
        failures are logged and the event is kept without video.
        """
        validate(alarm)
        trigger = alarm.first_trigger
        logger.info(f"[ALARM] Processing delayed alarm {trigger.eventId} for device {trigger.device}")

        credentials = self.credentials_service.get_credentials()
        if alarm.eventPath:
            alarm.eventLocalLink = f"{credentials.hostname}{alarm.eventPath}"

        self.enrich(alarm)
        if not self.object_store.bucket:
            logger.error("[ALARM] StorageBucket environment variable is not configured")
            raise ConfigurationError(responses.ERROR_STORAGE_CONFIG)

        event_key, video_key = storage_keys.derive_keys(trigger, alarm.timestamp)
        self.object_store.put_json(event_key, alarm.to_json())
        logger.info(f"[ALARM] Alarm event stored with key: {event_key}")

        if trigger.thumbnail:
            self._store_thumbnail_data(trigger.thumbnail, video_key)

        video_stored = False
        if alarm.eventPath:
            video_stored = self._capture_and_store(alarm, trigger, event_key, video_key)
        else:
            logger.info("[ALARM] No event path provided, skipping video download")

        self._send_summary(alarm, trigger, event_key, video_key if video_stored else None)
        logger.info(f"[ALARM] Delayed alarm {trigger.eventId} processed")

    def _capture_and_store(self, alarm: AlarmEvent, trigger: Trigger, event_key: str, video_key: str) -> bool:
        target = CaptureTarget(
            event_local_link=alarm.eventLocalLink,
            event_id=trigger.eventId,
            key_prefix=storage_keys.key_prefix(trigger, alarm.timestamp),
            coordinates=self.device_registry.resolve_device_coordinates(trigger.device),
            device_name=trigger.deviceName,
        )
        outcome = self.capture.capture(target)

        if isinstance(outcome, CaptureNoVideo):
            raise NoVideoDownloadedError(event_id=trigger.eventId, message=outcome.detail)
        if isinstance(outcome, CaptureFailed):
            logger.error(f"[ALARM] Video capture failed for event {trigger.eventId}: {outcome.detail}")
            return False

        try:
            self.object_store.put_binary(video_key, outcome.data, "video/mp4")
            logger.info(f"[ALARM] Video stored with key: {video_key}")

            trigger.originalFileName = outcome.original_file_name
            if not trigger.thumbnail and outcome.preview:
                self._store_generated_thumbnail(outcome.preview, video_key)
            self.object_store.put_json(event_key, alarm.to_json())
            logger.info(f"[ALARM] Alarm updated with original filename {outcome.original_file_name}")
            return True
        except StorageError as e:
            logger.error(f"[ALARM] Error uploading video for event {trigger.eventId}: {e}")
            return False
        finally:
            cleanup_temp_file(outcome.local_path)

    def _store_thumbnail_data(self, encoded: str, video_key: str):
        data = decode_thumbnail(encoded)
        if data is None:
            logger.warning("[ALARM] Thumbnail in payload is not valid base64, skipping")
            return
        try:
            self.object_store.put_binary(storage_keys.thumbnail_key(video_key), data, "image/jpeg")
        except StorageError as e:
            logger.warning(f"[ALARM] Failed to store thumbnail (non-critical): {e}")

    def _store_generated_thumbnail(self, preview: bytes, video_key: str):
        try:
            data = make_thumbnail(preview)
            self.object_store.put_binary(storage_keys.thumbnail_key(video_key), data, "image/jpeg")
        except (OSError, StorageError) as e:
            logger.warning(f"[ALARM] Failed to store generated thumbnail (non-critical): {e}")

    def _send_summary(self, alarm: AlarmEvent, trigger: Trigger, event_key: str, video_key: Optional[str]):
        presigned = None
        if video_key:
            try:
                presigned = self.object_store.presigned_download_url(
                    video_key, SUMMARY_URL_EXPIRY_SECONDS, trigger.originalFileName
                )
            except StorageError as e:
                logger.warning(f"[ALARM] Failed to generate presigned video URL: {e}")

        metadata = {}
        if trigger.thumbnail:
            metadata["thumbnail"] = trigger.thumbnail
        if trigger.originalFileName:
            metadata["originalFileName"] = trigger.originalFileName

        self.queue_service.send_summary_event(SummaryEvent(
            EventId=trigger.eventId,
            Device=trigger.device,
            Timestamp=alarm.timestamp,
            AlarmS3Key=event_key,
            VideoS3Key=video_key,
            PresignedVideoUrl=presigned,
            AlarmName=alarm.name,
            DeviceName=trigger.deviceName,
            EventType=trigger.key,
            Metadata=metadata,
        ))
