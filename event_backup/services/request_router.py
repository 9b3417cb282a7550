# event_backup/services/request_router.py
"""
Maps an HTTP-style request (method, path, query, body) to a pipeline
operation and returns an ApiResponse. Used by the serverless handler; the
FastAPI routers call the same services directly.

Paths may carry a stage prefix ("dev/latestvideo"); only the last segment
selects the route.
"""

from typing import Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from event_backup.schemas.alarm import AlarmEvent
from event_backup.services.health_service import check_health
from event_backup.utils import responses
from event_backup.utils.json_parser import get_nested, safe_parse_json
from event_backup.utils.logger import get_logger

logger = get_logger(__name__)

ROUTE_ALARM = "alarmevent"
ROUTE_LATEST_VIDEO = "latestvideo"
ROUTE_SUMMARY = "summary"
ROUTE_HEALTH = "health"
INVALID_ALARM_FORMAT = "Invalid alarm object format"
MISSING_EVENT_ID = "Missing required parameter. Provide 'eventId' for video download."


class WebhookParseError(Exception):
    pass


def parse_webhook_body(raw_body) -> Optional[AlarmEvent]:
    """
    Body shape: {"alarm": {...}, "timestamp": <epoch ms>}. The envelope
    timestamp is copied onto the alarm. Returns None when no alarm object is
    present; raises WebhookParseError for a malformed one.
    """
    data = safe_parse_json(raw_body)
    if not isinstance(data, dict):
        raise WebhookParseError(responses.ERROR_GENERAL)

    alarm_data = get_nested(data, "alarm")
    if alarm_data is None:
        return None
    if not isinstance(alarm_data, dict):
        raise WebhookParseError(INVALID_ALARM_FORMAT)

    try:
        alarm = AlarmEvent.model_validate(alarm_data)
    except PydanticValidationError as e:
        logger.warning(f"[ALARM] Webhook alarm does not match the expected shape: {e}")
        raise WebhookParseError(INVALID_ALARM_FORMAT) from e

    envelope_ts = data.get("timestamp")
    if isinstance(envelope_ts, (int, float)) and not isinstance(envelope_ts, bool):
        alarm.timestamp = int(envelope_ts)
    return alarm


def handle_alarm_webhook(alarm_service, raw_body) -> responses.ApiResponse:
    if not raw_body:
        return responses.bad_request(responses.ERROR_GENERAL)
    try:
        alarm = parse_webhook_body(raw_body)
    except WebhookParseError as e:
        return responses.bad_request(str(e))
    return alarm_service.process_alarm_sync(alarm)


def split_route(path: Optional[str]) -> Tuple[str, str]:
    """Returns (path without leading slash, last segment)."""
    trimmed = (path or "").lstrip("/")
    return trimmed, trimmed.rsplit("/", 1)[-1]


def route(services, method: Optional[str], path: Optional[str],
          query: Optional[dict] = None, body: Optional[str] = None) -> responses.ApiResponse:
    if not method or path is None or path == "":
        return responses.bad_request(responses.ERROR_GENERAL)

    method = method.upper()
    query = query or {}
    trimmed, segment = split_route(path)
    logger.info(f"Method: {method}, Path: {trimmed}, Route: {segment}")

    if method == "OPTIONS":
        return responses.cors_preflight()
    if method in ("PUT", "PATCH", "DELETE", "HEAD"):
        return responses.error(405, f"Method {method} is not allowed for this endpoint.")

    if method == "POST" and segment == ROUTE_ALARM:
        return handle_alarm_webhook(services.alarm_service, body)
    if method == "GET" and segment == ROUTE_LATEST_VIDEO:
        return services.retrieval_service.get_latest_video()
    if method == "GET" and segment == ROUTE_SUMMARY:
        return services.retrieval_service.get_summary()
    if method == "GET" and segment == ROUTE_HEALTH:
        return responses.ok(check_health(services))
    if method == "GET" and "eventId" in query:
        return services.retrieval_service.get_video_by_event_id(query.get("eventId"))
    if method == "GET" and segment in ("", "video"):
        return responses.bad_request(MISSING_EVENT_ID)

    return responses.route_not_found(f"{method} /{trimmed}")
