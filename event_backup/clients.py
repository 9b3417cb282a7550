# event_backup/clients.py
"""
AWS client construction. One client per service, created lazily and reused
for the lifetime of the process (warm serverless containers included).
"""

from functools import lru_cache

import boto3
from botocore.config import Config

from event_backup.config import settings

# Every AWS call gets an explicit timeout so nothing blocks indefinitely
_CLIENT_CONFIG = Config(
    connect_timeout=5,
    read_timeout=30,
    retries={"max_attempts": 3, "mode": "standard"},
)


@lru_cache(maxsize=None)
def get_client(service_name: str):
    """boto3 client for `service_name` in the configured region."""
    return boto3.client(service_name, region_name=settings.AWS_REGION, config=_CLIENT_CONFIG)


def s3_client():
    return get_client("s3")


def sqs_client():
    return get_client("sqs")


def secrets_client():
    return get_client("secretsmanager")


def ses_client():
    return get_client("ses")


def logs_client():
    return get_client("logs")
