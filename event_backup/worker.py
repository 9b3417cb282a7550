# event_backup/worker.py
"""
Queue worker for deployments without a serverless runtime.

Long-polls the delay queue and runs each batch through the same dispatcher
the serverless handler uses. Messages are deleted once acknowledged; a
failed message is left to reappear after its visibility timeout.

Usage: python -m event_backup.worker
"""

import time

from event_backup.dependencies import get_services
from event_backup.utils.logger import get_logger

logger = get_logger(__name__)

# Reconnect delay in seconds (doubles on each failure, max 60s)
_MIN_BACKOFF = 3
_MAX_BACKOFF = 60


def to_record(message: dict) -> dict:
    """SQS ReceiveMessage shape → the record shape the dispatcher expects."""
    return {
        "messageId": message.get("MessageId"),
        "receiptHandle": message.get("ReceiptHandle"),
        "body": message.get("Body", ""),
        "messageAttributes": message.get("MessageAttributes", {}),
        "eventSource": "aws:sqs",
    }


def process_batch(services, messages) -> int:
    """Dispatch one received batch; returns the number of messages deleted."""
    records = [to_record(m) for m in messages]
    failed = {f["itemIdentifier"] for f in services.dispatcher.dispatch_records(records)}
    deleted = 0
    for record in records:
        if record["messageId"] in failed:
            continue
        services.queue_service.delete_message(record["receiptHandle"])
        deleted += 1
    return deleted


def run_forever(services=None, sleep=time.sleep, max_iterations=None):
    services = services or get_services()
    backoff = _MIN_BACKOFF
    iterations = 0
    logger.info("📡 Worker polling the alarm processing queue...")

    while max_iterations is None or iterations < max_iterations:
        iterations += 1
        try:
            messages = services.queue_service.receive_batch()
            if messages:
                deleted = process_batch(services, messages)
                logger.info(f"[QUEUE] Batch done: {deleted}/{len(messages)} acknowledged")
            backoff = _MIN_BACKOFF  # reset on success
        except Exception as e:
            logger.error(f"❌ Worker poll failed: {e}. Retry in {backoff}s", exc_info=True)
            sleep(backoff)
            backoff = min(backoff * 2, _MAX_BACKOFF)


if __name__ == "__main__":
    run_forever()
