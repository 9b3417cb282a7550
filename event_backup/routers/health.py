# event_backup/routers/health.py
"""
System health check endpoint.
Returns status of backend + storage + queues + Protect reachability.
"""

from fastapi import APIRouter, Depends

from event_backup.dependencies import Services, get_services
from event_backup.services.health_service import check_health

router = APIRouter()


@router.get("/health", summary="System health check")
def health_check(services: Services = Depends(get_services)):
    """
    Returns:
    - Backend status
    - Storage bucket reachability
    - Processing and dead-letter queue depth
    - Protect console reachability
    """
    return check_health(services)
