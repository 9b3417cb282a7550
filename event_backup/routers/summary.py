# event_backup/routers/summary.py
"""GET /summary — per-camera event counts and links for the last 24 hours."""

from fastapi import APIRouter, Depends

from event_backup.dependencies import get_retrieval_service
from event_backup.services.retrieval_service import RetrievalService

router = APIRouter()


@router.get("/summary", summary="24h per-camera event summary")
def summary(retrieval: RetrievalService = Depends(get_retrieval_service)):
    return retrieval.get_summary().to_fastapi()
