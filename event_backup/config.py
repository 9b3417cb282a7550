# event_backup/config.py
"""
Application configuration using Pydantic-Settings.
All settings can be overridden via environment variables or .env file.
"""

import json
import logging
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # ── AWS ───────────────────────────────────────────────────────────────
    AWS_REGION: str = "us-east-1"
    STORAGE_BUCKET: Optional[str] = None
    ALARM_PROCESSING_QUEUE_URL: Optional[str] = None
    ALARM_PROCESSING_DLQ_URL: Optional[str] = None
    SUMMARY_EVENT_QUEUE_URL: Optional[str] = None
    UNIFI_CREDENTIALS_SECRET_ARN: Optional[str] = None
    FUNCTION_NAME: Optional[str] = None     # Enables CloudWatch log lookup for notifications

    # ── Processing ────────────────────────────────────────────────────────
    PROCESSING_DELAY_SECONDS: int = 120
    MAX_RETENTION_DAYS: int = 30            # Window for latest-video search
    EVENT_SEARCH_DAYS: int = 90             # Window for eventId search
    PRESIGNED_URL_EXPIRY_SECONDS: int = 3600
    TIMEZONE: str = "UTC"                   # Zone used for the date folder in storage keys

    # ── Devices ───────────────────────────────────────────────────────────
    # {"devices": [{"deviceName": "...", "deviceMac": "...", "archiveButtonX": 1205, "archiveButtonY": 240}]}
    DEVICE_METADATA: Optional[str] = None

    # ── Browser capture ───────────────────────────────────────────────────
    DOWNLOAD_DIRECTORY: str = "/tmp"
    PAGE_LOAD_TIMEOUT_SECONDS: int = 20
    LOGIN_NAVIGATION_TIMEOUT_SECONDS: int = 15
    READY_STATE_TIMEOUT_SECONDS: int = 10
    UI_SETTLE_SECONDS: float = 3
    DOWNLOAD_WAIT_SECONDS: int = 118        # Must stay under the invocation budget
    DOWNLOAD_POLL_INTERVAL_SECONDS: float = 1
    ANNOTATE_CLICK_SCREENSHOTS: bool = True

    # ── Notifications ─────────────────────────────────────────────────────
    SUPPORT_EMAIL: Optional[str] = None

    # ── Security ──────────────────────────────────────────────────────────
    API_KEY: Optional[str] = None   # Set in .env to enable auth on the GET endpoints

    # ── Logging ───────────────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"

    @property
    def max_queue_delay(self) -> int:
        # SQS rejects DelaySeconds above 15 minutes
        return max(0, min(self.PROCESSING_DELAY_SECONDS, 900))

    @property
    def device_registry_entries(self) -> list:
        if not self.DEVICE_METADATA:
            return []
        try:
            parsed = json.loads(self.DEVICE_METADATA)
        except json.JSONDecodeError as e:
            logging.getLogger(__name__).warning(f"DEVICE_METADATA is not valid JSON: {e}")
            return []
        devices = parsed.get("devices") if isinstance(parsed, dict) else None
        return devices if isinstance(devices, list) else []

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
