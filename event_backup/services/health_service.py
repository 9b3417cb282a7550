# event_backup/services/health_service.py
"""
System health: storage bucket, queue depths, and Protect host reachability.
Each probe is independent; a failing probe marks the result degraded.
"""

from datetime import datetime, timezone

import requests
from botocore.exceptions import BotoCoreError, ClientError

from event_backup.utils.errors import EventBackupError
from event_backup.utils.logger import get_logger

logger = get_logger(__name__)


def check_health(services) -> dict:
    result = {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "backend": "ok",
        "storage": "unknown",
        "queues": {},
        "protect": "unknown",
    }

    # Storage bucket
    store = services.object_store
    if not store.bucket:
        result["storage"] = "not configured"
        result["status"] = "degraded"
    else:
        try:
            store.client.head_bucket(Bucket=store.bucket)
            result["storage"] = "ok"
        except (ClientError, BotoCoreError) as e:
            result["storage"] = f"error: {str(e)}"
            result["status"] = "degraded"

    # Queue depths
    queues = services.queue_service
    for name, url in (
        ("processing", queues.processing_queue_url),
        ("deadLetter", queues.dead_letter_queue_url),
    ):
        result["queues"][name] = queues.approximate_depth(url) if url else "not configured"
    if not queues.processing_queue_url:
        result["status"] = "degraded"

    # Protect console
    try:
        hostname = services.credentials_service.get_credentials().hostname
        resp = requests.get(hostname, timeout=3, verify=False)
        result["protect"] = "ok" if resp.status_code < 500 else f"http_{resp.status_code}"
    except requests.exceptions.ConnectionError:
        result["protect"] = "unreachable"
        result["status"] = "degraded"
    except (requests.exceptions.RequestException, EventBackupError) as e:
        result["protect"] = f"error: {str(e)}"

    logger.debug(f"Health check: {result['status']}")
    return result
