# event_backup/routers/videos.py
"""
Video retrieval endpoints. Both return a presigned download link, never bytes.
GET /latestvideo     — newest video within the retention window.
GET /?eventId=...    — video for one Protect event (also served at /video).
"""

from typing import Optional

from fastapi import APIRouter, Depends

from event_backup.dependencies import get_retrieval_service
from event_backup.services.request_router import MISSING_EVENT_ID
from event_backup.services.retrieval_service import RetrievalService
from event_backup.utils import responses

router = APIRouter()


@router.get("/latestvideo", summary="Presigned link to the most recent video")
def latest_video(retrieval: RetrievalService = Depends(get_retrieval_service)):
    return retrieval.get_latest_video().to_fastapi()


@router.get("/", summary="Presigned link to the video for an eventId")
@router.get("/video", summary="Presigned link to the video for an eventId")
def video_by_event_id(eventId: Optional[str] = None,
                      retrieval: RetrievalService = Depends(get_retrieval_service)):
    if eventId is None:
        return responses.bad_request(MISSING_EVENT_ID).to_fastapi()
    return retrieval.get_video_by_event_id(eventId).to_fastapi()
