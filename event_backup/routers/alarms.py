# event_backup/routers/alarms.py
"""
Protect alarm webhook.
POST /alarmevent — validates the alarm and queues it for delayed processing.
"""

from fastapi import APIRouter, Depends, Request

from event_backup.dependencies import get_alarm_service
from event_backup.services.alarm_service import AlarmService
from event_backup.services.request_router import handle_alarm_webhook
from event_backup.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/alarmevent", summary="Protect alarm webhook — queues the event for processing")
async def receive_alarm(request: Request, alarm_service: AlarmService = Depends(get_alarm_service)):
    """
    Returns 200 with the queue acknowledgement, 400 for a malformed alarm,
    500 when the processing queue is not configured.
    """
    raw_body = await request.body()
    logger.info(f"[ALARM] Webhook from {request.client.host if request.client else 'unknown'} | {len(raw_body)} bytes")
    return handle_alarm_webhook(alarm_service, raw_body).to_fastapi()
