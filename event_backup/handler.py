# event_backup/handler.py
"""
Serverless entry point.

One function receives three kinds of invocation:
- SQS batches from the delay queue   → deferred alarm processing
- API Gateway proxy requests         → webhook / retrieval routes
- Scheduled keep-warm pings          → 200 without side effects
"""

from event_backup.dependencies import get_services
from event_backup.services.request_router import route
from event_backup.utils import responses
from event_backup.utils.logger import get_logger

logger = get_logger(__name__)


def is_sqs_event(event) -> bool:
    records = event.get("Records") if isinstance(event, dict) else None
    return bool(records) and all(r.get("eventSource") == "aws:sqs" for r in records)


def is_keep_warm(event) -> bool:
    return isinstance(event, dict) and event.get("source") == "aws.events"


def lambda_handler(event, context=None):
    request_id = getattr(context, "aws_request_id", "local")
    logger.info(f"Invocation {request_id} started")

    if is_keep_warm(event):
        logger.info("Keep-warm ping")
        return responses.ok({"msg": "keep-warm"}).to_proxy()

    services = get_services()

    if is_sqs_event(event):
        failures = services.dispatcher.dispatch_records(event["Records"])
        return {"batchItemFailures": failures}

    if not isinstance(event, dict):
        return responses.bad_request(responses.ERROR_GENERAL).to_proxy()

    try:
        response = route(
            services,
            method=event.get("httpMethod"),
            path=event.get("path"),
            query=event.get("queryStringParameters") or {},
            body=event.get("body"),
        )
    except Exception as e:
        logger.error(f"Unhandled exception routing request: {e}", exc_info=True)
        response = responses.server_error(str(e))
    return response.to_proxy()
