# event_backup/schemas/alarm.py
"""
Alarm webhook payload as sent by UniFi Protect, plus the fields the pipeline
fills in while processing (deviceName, date, eventKey, videoKey, ...).
"""

from pydantic import BaseModel
from typing import List, Optional


class Source(BaseModel):
    device: Optional[str] = None
    type: Optional[str] = None

    class Config:
        extra = "allow"


class Condition(BaseModel):
    type: Optional[str] = None
    source: Optional[str] = None

    class Config:
        extra = "allow"


class Trigger(BaseModel):
    key: str                 # motion, person, vehicle, line_crossed, ... (open set)
    device: str
    eventId: str

    # ── Enriched during processing ────────────────────────────────────────
    deviceName: Optional[str] = None
    date: Optional[str] = None
    eventKey: Optional[str] = None
    videoKey: Optional[str] = None
    originalFileName: Optional[str] = None
    thumbnail: Optional[str] = None

    class Config:
        extra = "allow"


class AlarmEvent(BaseModel):
    name: Optional[str] = None
    sources: Optional[List[Source]] = None
    conditions: Optional[List[Condition]] = None
    triggers: List[Trigger] = []
    timestamp: Optional[int] = None
    eventPath: Optional[str] = None
    eventLocalLink: Optional[str] = None

    class Config:
        extra = "allow"

    @property
    def first_trigger(self) -> Optional[Trigger]:
        return self.triggers[0] if self.triggers else None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)

    def public_view(self) -> dict:
        """Event data as exposed by the retrieval endpoints (no device inclusion list)."""
        return self.model_dump(exclude_none=True, exclude={"sources"})

