# event_backup/services/device_registry.py
"""
Device registry loaded once from DEVICE_METADATA.

Maps a device MAC to its display name and to the screen coordinates of the
viewer's archive button. The coordinates are per-device configuration because
the viewer exposes no stable selector for that button.
"""

from typing import Dict, Iterable, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from event_backup.schemas.device import (
    DEFAULT_ARCHIVE_BUTTON_X,
    DEFAULT_ARCHIVE_BUTTON_Y,
    DeviceMetadata,
)
from event_backup.utils.logger import get_logger

logger = get_logger(__name__)


def normalize_mac(device_id: Optional[str]) -> str:
    return (device_id or "").replace(":", "").replace("-", "").strip().upper()


class DeviceRegistry:
    def __init__(self, devices: Iterable[DeviceMetadata] = ()):
        self._devices: Dict[str, DeviceMetadata] = {}
        for device in devices:
            self._devices[normalize_mac(device.deviceMac)] = device

    @classmethod
    def from_entries(cls, entries: Iterable[dict]) -> "DeviceRegistry":
        devices = []
        for entry in entries:
            try:
                devices.append(DeviceMetadata.model_validate(entry))
            except PydanticValidationError as e:
                logger.warning(f"Skipping invalid device metadata entry {entry}: {e}")
        logger.info(f"Device registry loaded with {len(devices)} device(s)")
        return cls(devices)

    def get(self, device_id: str) -> Optional[DeviceMetadata]:
        return self._devices.get(normalize_mac(device_id))

    def resolve_device_name(self, device_id: str) -> str:
        device = self.get(device_id)
        return device.deviceName if device else device_id

    def resolve_device_coordinates(self, device_id: str) -> Tuple[int, int]:
        device = self.get(device_id)
        if device is None:
            return DEFAULT_ARCHIVE_BUTTON_X, DEFAULT_ARCHIVE_BUTTON_Y
        x = device.archiveButtonX if device.archiveButtonX is not None else DEFAULT_ARCHIVE_BUTTON_X
        y = device.archiveButtonY if device.archiveButtonY is not None else DEFAULT_ARCHIVE_BUTTON_Y
        return x, y

    def all_devices(self) -> list:
        return list(self._devices.values())
