# event_backup/services/event_dispatcher.py
"""Routes queue records into deferred alarm processing."""

from typing import Iterable, List

from pydantic import ValidationError as PydanticValidationError

from event_backup.schemas.alarm import AlarmEvent
from event_backup.utils.errors import (
    ConfigurationError,
    CredentialsError,
    NoVideoDownloadedError,
    ValidationError,
)
from event_backup.utils.logger import get_logger

logger = get_logger(__name__)


class EventDispatcher:
    def __init__(self, alarm_service, queue_service, dead_letter_service):
        self.alarm_service = alarm_service
        self.queue_service = queue_service
        self.dead_letter_service = dead_letter_service

    def process_record(self, record: dict):
        """
        Process one queue record. Raises only for errors worth a transport
        redelivery (storage/queue outages); everything else is settled here.
        """
        message_id = record.get("messageId") or record.get("MessageId")
        body = record.get("body") or record.get("Body") or ""

        try:
            alarm = AlarmEvent.model_validate_json(body)
        except PydanticValidationError as e:
            logger.error(f"[QUEUE] Failed to deserialize alarm from message {message_id}: {e}")
            return

        try:
            self.alarm_service.process_alarm_deferred(alarm)

        # ── Application dead-letter: capture produced no file ─────────────
        except NoVideoDownloadedError:
            logger.warning(f"[QUEUE] No video files were downloaded for message {message_id}, sending to DLQ")
            self.dead_letter_service.handle_no_video(body, message_id)

        # ── Not retryable: needs an operator fix ─────────────────────────
        except (ValidationError, ConfigurationError, CredentialsError) as e:
            logger.error(f"[QUEUE] Message {message_id} dropped, not retryable: {e}")

    def dispatch_records(self, records: Iterable[dict]) -> List[dict]:
        """Returns batchItemFailures for records to be redelivered."""
        records = list(records)
        logger.info(f"[QUEUE] Dispatching {len(records)} record(s)")
        return self.queue_service.dispatch(records, self.process_record)
