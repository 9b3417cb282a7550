# event_backup/services/storage_keys.py
"""
Deterministic object-store keys for alarm events.

Layout:
  {date}/{eventId}_{device}_{timestamp}.json
  {date}/{eventId}_{device}_{timestamp}.mp4
  {date}/{eventId}_{device}_{timestamp}.jpg                         (thumbnail)
  screenshots/{date}/{eventId}_{device}_{timestamp}_{stage}-screenshot.png
  metadata/cameras.json

The write path and both search paths (latest, by eventId) derive keys here
and nowhere else.
"""

import re
from datetime import datetime
from typing import Optional, Tuple

import pytz

from event_backup.config import settings
from event_backup.schemas.alarm import Trigger

CAMERAS_METADATA_KEY = "metadata/cameras.json"
SCREENSHOT_ROOT = "screenshots"
SCREENSHOT_STAGES = ("login", "pageload", "afterarchivebuttonclick", "signout")

_TRAILING_TIMESTAMP = re.compile(r"_(\d+)\.[A-Za-z0-9]+$")


def _zone(tz_name: Optional[str] = None):
    try:
        return pytz.timezone(tz_name or settings.TIMEZONE)
    except pytz.UnknownTimeZoneError:
        return pytz.utc


def local_datetime(timestamp_ms: int, tz_name: Optional[str] = None) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=pytz.utc).astimezone(_zone(tz_name))


def date_folder(timestamp_ms: int, tz_name: Optional[str] = None) -> str:
    """Local calendar date of the event as YYYY-MM-DD."""
    return local_datetime(timestamp_ms, tz_name).strftime("%Y-%m-%d")


def iso_local(timestamp_ms: int, tz_name: Optional[str] = None) -> str:
    return local_datetime(timestamp_ms, tz_name).strftime("%Y-%m-%dT%H:%M:%S")


def normalize_device(device: str) -> str:
    return (device or "").replace(":", "")


def key_prefix(trigger: Trigger, timestamp_ms: int, tz_name: Optional[str] = None) -> str:
    return f"{date_folder(timestamp_ms, tz_name)}/{trigger.eventId}_{normalize_device(trigger.device)}_{timestamp_ms}"


def derive_keys(trigger: Trigger, timestamp_ms: int, tz_name: Optional[str] = None) -> Tuple[str, str]:
    """Returns (event_key, video_key); they differ only in extension."""
    prefix = key_prefix(trigger, timestamp_ms, tz_name)
    return f"{prefix}.json", f"{prefix}.mp4"


def video_key_for(event_key: str) -> str:
    return re.sub(r"\.json$", ".mp4", event_key)


def event_key_for(video_key: str) -> str:
    return re.sub(r"\.mp4$", ".json", video_key)


def thumbnail_key(video_key: str) -> str:
    return re.sub(r"\.mp4$", ".jpg", video_key)


def screenshot_key(prefix: str, stage: str) -> str:
    """`prefix` is the {date}/{eventId}_{device}_{timestamp} part shared with the event key."""
    return f"{SCREENSHOT_ROOT}/{prefix}_{stage}-screenshot.png"


def event_search_prefix(day: str, event_id: str) -> str:
    return f"{day}/{event_id}_"


def extract_timestamp(key: str) -> Optional[int]:
    """Parse the trailing _{timestamp}.ext of a key; None when absent."""
    match = _TRAILING_TIMESTAMP.search(key or "")
    return int(match.group(1)) if match else None


def basename(key: str) -> str:
    return key.rsplit("/", 1)[-1]
