# event_backup/services/dead_letter_service.py
"""
Dead-letter diversion for alarms whose capture produced no video.

The DLQ send comes first: it is what makes a manual replay possible. The
operator notification runs afterwards in its own guard, so a mail failure
never undoes a successful diversion. Nothing here raises; the next message
in the batch must always get its turn.
"""

from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from event_backup.schemas.alarm import AlarmEvent
from event_backup.utils.logger import get_logger

logger = get_logger(__name__)

NO_VIDEO_REASON = "No video files were downloaded - may require retry"


class DeadLetterService:
    def __init__(self, queue_service, notification_service):
        self.queue_service = queue_service
        self.notification_service = notification_service

    def handle_no_video(self, body: str, message_id: Optional[str] = None) -> bool:
        """Returns True when the message reached the dead-letter queue."""
        try:
            alarm = AlarmEvent.model_validate_json(body)
        except PydanticValidationError as e:
            logger.error(f"[DLQ] Could not rebuild alarm from message {message_id}, giving up: {e}")
            return False

        try:
            receipt = self.queue_service.send_to_dead_letter(body, NO_VIDEO_REASON, alarm.timestamp)
        except Exception as e:
            logger.error(f"[DLQ] Failed to send alarm to DLQ for message {message_id}: {e}", exc_info=True)
            return False
        logger.info(f"[DLQ] Sent alarm to DLQ for retry: {message_id}")

        try:
            self.notification_service.notify_failure(
                alarm, NO_VIDEO_REASON, receipt.message_id, receipt.retry_attempt
            )
        except Exception as e:
            logger.error(f"[DLQ] Error sending failure notification: {e}", exc_info=True)
        return True
