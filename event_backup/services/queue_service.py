# event_backup/services/queue_service.py
"""
Queue gateway over SQS.

- Delay queue: webhook → (PROCESSING_DELAY_SECONDS) → deferred processing
- Application dead-letter: alarms whose capture produced no video file
- Summary queue: optional downstream notification after a video is stored

Transport-level retries (visibility timeout, maxReceiveCount → infrastructure
DLQ) are configured on the queue itself and are invisible here.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from botocore.exceptions import ClientError

from event_backup.schemas.summary import SummaryEvent
from event_backup.utils.errors import ConfigurationError, QueueError
from event_backup.utils.logger import get_logger

logger = get_logger(__name__)


def retry_attempt_timestamp(now: Optional[datetime] = None) -> str:
    """UTC time rendered as yyyy-MM-ddTHH:mm:ss.fffZ."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def _string_attr(value) -> dict:
    return {"DataType": "String", "StringValue": str(value)}


def _number_attr(value) -> dict:
    return {"DataType": "Number", "StringValue": str(value if value is not None else 0)}


@dataclass
class DeadLetterReceipt:
    message_id: str
    retry_attempt: str


class QueueService:
    def __init__(self, client, processing_queue_url: Optional[str] = None,
                 dead_letter_queue_url: Optional[str] = None,
                 summary_queue_url: Optional[str] = None):
        self.client = client
        self.processing_queue_url = processing_queue_url
        self.dead_letter_queue_url = dead_letter_queue_url
        self.summary_queue_url = summary_queue_url

    # ── Delay queue ────────────────────────────────────────────────────────
    def enqueue_delayed(self, message: str, delay_seconds: int,
                        event_id: str, device: str, timestamp: Optional[int]) -> str:
        """Send `message` with a delivery delay. Returns the SQS message id."""
        if not self.processing_queue_url:
            raise ConfigurationError("SQS queue not configured")
        try:
            result = self.client.send_message(
                QueueUrl=self.processing_queue_url,
                MessageBody=message,
                DelaySeconds=delay_seconds,
                MessageAttributes={
                    "EventId": _string_attr(event_id),
                    "Device": _string_attr(device),
                    "Timestamp": _number_attr(timestamp),
                },
            )
        except ClientError as e:
            logger.error(f"[QUEUE] Failed to enqueue event {event_id}: {e}")
            raise QueueError(f"Failed to enqueue event {event_id}: {e}") from e

        message_id = result["MessageId"]
        logger.info(f"[QUEUE] Queued event {event_id} for processing in {delay_seconds}s. MessageId: {message_id}")
        return message_id

    def dispatch(self, records: Iterable[dict], callback: Callable[[dict], None]) -> List[dict]:
        """
        Run `callback` for each record in order. A record whose callback raises
        is reported in the returned batchItemFailures list and the remaining
        records are still processed.
        """
        failures = []
        for record in records:
            message_id = record.get("messageId") or record.get("MessageId") or "unknown"
            try:
                logger.info(f"[QUEUE] Processing message {message_id}")
                callback(record)
                logger.info(f"[QUEUE] Message {message_id} processed")
            except Exception as e:
                logger.error(f"[QUEUE] Message {message_id} failed, leaving for redelivery: {e}", exc_info=True)
                failures.append({"itemIdentifier": message_id})
        return failures

    # ── Long polling (non-serverless worker) ──────────────────────────────
    def receive_batch(self, max_messages: int = 10, wait_seconds: int = 20) -> List[dict]:
        if not self.processing_queue_url:
            raise ConfigurationError("SQS queue not configured")
        response = self.client.receive_message(
            QueueUrl=self.processing_queue_url,
            MaxNumberOfMessages=max_messages,
            WaitTimeSeconds=wait_seconds,
            MessageAttributeNames=["All"],
        )
        return response.get("Messages", [])

    def delete_message(self, receipt_handle: str):
        self.client.delete_message(QueueUrl=self.processing_queue_url, ReceiptHandle=receipt_handle)

    # ── Application dead-letter ───────────────────────────────────────────
    def send_to_dead_letter(self, body: str, reason: str,
                            original_timestamp: Optional[int]) -> DeadLetterReceipt:
        """Divert `body` unchanged so a manual replay is a plain re-enqueue."""
        if not self.dead_letter_queue_url:
            logger.error("[DLQ] DLQ URL not configured, cannot send alarm to DLQ")
            raise ConfigurationError("DLQ URL not configured")

        retry_attempt = retry_attempt_timestamp()
        logger.info(f"[DLQ] Sending alarm to DLQ. Reason: {reason}")
        try:
            response = self.client.send_message(
                QueueUrl=self.dead_letter_queue_url,
                MessageBody=body,
                MessageAttributes={
                    "FailureReason": _string_attr(reason),
                    "OriginalTimestamp": _number_attr(original_timestamp),
                    "RetryAttempt": _string_attr(retry_attempt),
                },
            )
        except ClientError as e:
            raise QueueError(f"Failed to send to DLQ: {e}") from e

        logger.info(f"[DLQ] Sent alarm to DLQ with message ID: {response['MessageId']}")
        return DeadLetterReceipt(message_id=response["MessageId"], retry_attempt=retry_attempt)

    def approximate_depth(self, queue_url: Optional[str]) -> int:
        """Best-effort ApproximateNumberOfMessages; 0 when unknown."""
        if not queue_url:
            return 0
        try:
            attrs = self.client.get_queue_attributes(
                QueueUrl=queue_url,
                AttributeNames=["ApproximateNumberOfMessages"],
            )
            return int(attrs.get("Attributes", {}).get("ApproximateNumberOfMessages", 0))
        except (ClientError, ValueError) as e:
            logger.warning(f"[QUEUE] Could not read depth of {queue_url}: {e}")
            return 0

    # ── Summary queue ─────────────────────────────────────────────────────
    def send_summary_event(self, summary: SummaryEvent) -> Optional[str]:
        if not self.summary_queue_url:
            logger.debug("[QUEUE] Summary queue not configured, skipping summary event")
            return None
        try:
            result = self.client.send_message(
                QueueUrl=self.summary_queue_url,
                MessageBody=summary.model_dump_json(),
            )
        except ClientError as e:
            logger.warning(f"[QUEUE] Failed to queue summary event for {summary.EventId}: {e}")
            return None
        logger.info(f"[QUEUE] Queued summary event. MessageId: {result['MessageId']}")
        return result["MessageId"]
