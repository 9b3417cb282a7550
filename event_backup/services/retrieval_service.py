# event_backup/services/retrieval_service.py
"""
Read side: latest video, video by eventId, and the 24h per-camera summary.
Every video response is a presigned link; the API never streams video bytes.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import pytz

from event_backup.config import settings
from event_backup.schemas.alarm import AlarmEvent
from event_backup.schemas.summary import CameraEventSummary, CameraSummary, SummaryResponse
from event_backup.services import storage_keys
from event_backup.utils import responses
from event_backup.utils.errors import ConfigurationError, StorageError
from event_backup.utils.logger import get_logger

logger = get_logger(__name__)

DOWNLOAD_MESSAGE = "Use the downloadUrl to download the video file directly. URL expires in 1 hour."


def local_today() -> date:
    try:
        zone = pytz.timezone(settings.TIMEZONE)
    except pytz.UnknownTimeZoneError:
        zone = pytz.utc
    return datetime.now(zone).date()


def _load_alarm(data) -> Optional[AlarmEvent]:
    if not isinstance(data, dict):
        return None
    try:
        return AlarmEvent.model_validate(data)
    except ValueError:
        return None


def suggested_filename(video_key: str, alarm: Optional[AlarmEvent]) -> str:
    """originalFileName from the stored event, else the key's own filename."""
    trigger = alarm.first_trigger if alarm else None
    if trigger and trigger.originalFileName:
        return trigger.originalFileName
    return storage_keys.basename(video_key)


class RetrievalService:
    def __init__(self, object_store, queue_service,
                 device_registry, today: Callable[[], date] = local_today,
                 url_expiry_seconds: Optional[int] = None):
        self.object_store = object_store
        self.queue_service = queue_service
        self.device_registry = device_registry
        self.today = today
        self.url_expiry_seconds = url_expiry_seconds or settings.PRESIGNED_URL_EXPIRY_SECONDS

    def _video_descriptor(self, video_key: str, event_key: str, timestamp: int,
                          event_data, event_id: Optional[str] = None) -> dict:
        alarm = _load_alarm(event_data)
        filename = suggested_filename(video_key, alarm)
        url = self.object_store.presigned_download_url(video_key, self.url_expiry_seconds, filename)
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.url_expiry_seconds)
        event_date = (
            datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc) if timestamp
            else datetime.now(timezone.utc)
        )
        logger.info(f"[RETRIEVE] Presigned URL for {video_key} as {filename}")

        body = {
            "downloadUrl": url,
            "filename": filename,
            "videoKey": video_key,
            "eventKey": event_key,
            "timestamp": timestamp,
            "eventDate": event_date.strftime("%Y-%m-%d %H:%M:%S"),
            "expiresAt": expires_at.strftime("%Y-%m-%d %H:%M:%S UTC"),
            "eventData": alarm.public_view() if alarm else event_data,
            "message": DOWNLOAD_MESSAGE,
        }
        if event_id is not None:
            body["eventId"] = event_id
        return body

    def get_latest_video(self) -> responses.ApiResponse:
        logger.info("[RETRIEVE] Executing get latest video")
        try:
            found = self.object_store.find_latest_video(self.today(), settings.MAX_RETENTION_DAYS)
            if found is None:
                return responses.not_found("No video files found")
            video_key, timestamp = found
            if not self.object_store.head_exists(video_key):
                return responses.not_found("Video file not found")
            event_key = storage_keys.event_key_for(video_key)
            event_data = self.object_store.get_json(event_key)
            return responses.ok(self._video_descriptor(video_key, event_key, timestamp, event_data))
        except ConfigurationError:
            return responses.server_error_raw(responses.ERROR_STORAGE_CONFIG)
        except StorageError as e:
            logger.error(f"[RETRIEVE] Error retrieving latest video: {e}")
            return responses.server_error(f"Error retrieving latest video: {e}")

    def get_video_by_event_id(self, event_id: Optional[str]) -> responses.ApiResponse:
        if not event_id or not event_id.strip():
            return responses.bad_request("EventId parameter is required")
        event_id = event_id.strip()
        logger.info(f"[RETRIEVE] Executing get video by eventId {event_id}")
        try:
            event_key = self.object_store.find_event_by_id(event_id, self.today(), settings.EVENT_SEARCH_DAYS)
            if event_key is None:
                return responses.not_found(f"Event with eventId {event_id} not found")
            video_key = storage_keys.video_key_for(event_key)
            if not self.object_store.head_exists(video_key):
                return responses.not_found(f"Video file for event {event_id} not found")
            event_data = self.object_store.get_json(event_key)
            timestamp = storage_keys.extract_timestamp(event_key) or 0
            return responses.ok(
                self._video_descriptor(video_key, event_key, timestamp, event_data, event_id=event_id)
            )
        except ConfigurationError:
            return responses.server_error_raw(responses.ERROR_STORAGE_CONFIG)
        except StorageError as e:
            logger.error(f"[RETRIEVE] Storage error retrieving event {event_id}: {e.code} {e}")
            return responses.server_error(f"Storage service error while retrieving event {event_id}")

    # ── Summary ───────────────────────────────────────────────────────────
    def get_summary(self, now: Optional[datetime] = None) -> responses.ApiResponse:
        now = now or datetime.now(timezone.utc)
        cutoff_ms = int((now - timedelta(hours=24)).timestamp() * 1000)
        today = self.today()
        logger.info(f"[SUMMARY] Building 24h summary for {today}")

        try:
            cameras: Dict[str, CameraSummary] = {}
            for day in (today, today - timedelta(days=1)):
                for key in self.object_store.list_by_prefix(f"{day.strftime('%Y-%m-%d')}/"):
                    if not key.endswith(".json"):
                        continue
                    ts = storage_keys.extract_timestamp(key)
                    if ts is None or ts < cutoff_ms:
                        continue
                    self._add_to_summary(cameras, key)

            ordered = sorted(cameras.values(), key=lambda c: c.cameraName.lower())
            self._publish_camera_list(ordered)
            total = sum(c.count24h for c in ordered)
            dlq_count = self.queue_service.approximate_depth(self.queue_service.dead_letter_queue_url)
        except ConfigurationError:
            return responses.server_error_raw(responses.ERROR_STORAGE_CONFIG)
        except StorageError as e:
            logger.error(f"[SUMMARY] Error building summary: {e}")
            return responses.server_error(f"Error building summary: {e}")

        summary = SummaryResponse(
            cameras=ordered,
            totalCount=total,
            summaryMessage=f"{total} total events",
            summaryDate=today.strftime("%Y-%m-%d"),
            dlqMessageCount=dlq_count,
        )
        return responses.ok(summary.model_dump())

    def _add_to_summary(self, cameras: Dict[str, CameraSummary], event_key: str):
        alarm = _load_alarm(self.object_store.get_json(event_key))
        if alarm is None or alarm.first_trigger is None:
            logger.warning(f"[SUMMARY] Skipping unreadable event {event_key}")
            return
        trigger = alarm.first_trigger
        camera_id = storage_keys.normalize_device(trigger.device)
        camera = cameras.get(camera_id)
        if camera is None:
            camera = CameraSummary(
                cameraId=camera_id,
                cameraName=trigger.deviceName or self.device_registry.resolve_device_name(trigger.device),
            )
            cameras[camera_id] = camera

        video_key = storage_keys.video_key_for(event_key)
        video_url = None
        if self.object_store.head_exists(video_key):
            video_url = self.object_store.presigned_download_url(
                video_key, self.url_expiry_seconds, suggested_filename(video_key, alarm)
            )
        camera.events.append(CameraEventSummary(
            eventData=alarm.public_view(),
            videoUrl=video_url,
            originalFileName=trigger.originalFileName,
        ))
        camera.count24h += 1

    def _publish_camera_list(self, cameras):
        listing = [{"cameraId": c.cameraId, "cameraName": c.cameraName} for c in cameras]
        for device in self.device_registry.all_devices():
            camera_id = storage_keys.normalize_device(device.deviceMac).upper()
            if all(entry["cameraId"].upper() != camera_id for entry in listing):
                listing.append({"cameraId": camera_id, "cameraName": device.deviceName})
        try:
            self.object_store.put_json(storage_keys.CAMERAS_METADATA_KEY, {"cameras": listing})
        except StorageError as e:
            logger.warning(f"[SUMMARY] Could not publish camera list: {e}")
