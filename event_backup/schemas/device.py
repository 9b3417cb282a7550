# event_backup/schemas/device.py
from pydantic import BaseModel
from typing import Optional

DEFAULT_ARCHIVE_BUTTON_X = 1205
DEFAULT_ARCHIVE_BUTTON_Y = 240


class DeviceMetadata(BaseModel):
    deviceName: str
    deviceMac: str
    archiveButtonX: Optional[int] = None
    archiveButtonY: Optional[int] = None

    class Config:
        extra = "ignore"
