# event_backup/schemas/summary.py
from pydantic import BaseModel
from typing import Any, List, Optional


class CameraEventSummary(BaseModel):
    eventData: Optional[Any] = None
    videoUrl: Optional[str] = None
    originalFileName: Optional[str] = None


class CameraSummary(BaseModel):
    cameraId: str
    cameraName: str
    events: List[CameraEventSummary] = []
    count24h: int = 0


class SummaryResponse(BaseModel):
    cameras: List[CameraSummary] = []
    totalCount: int = 0
    summaryMessage: str
    summaryDate: str
    dlqMessageCount: int = 0


class SummaryEvent(BaseModel):
    """Message published to the downstream summary queue after a video is stored."""
    EventId: str
    Device: str
    Timestamp: int
    AlarmS3Key: str
    VideoS3Key: Optional[str] = None
    PresignedVideoUrl: Optional[str] = None
    AlarmName: Optional[str] = None
    DeviceName: Optional[str] = None
    EventType: Optional[str] = None
    Metadata: dict = {}
