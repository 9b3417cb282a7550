# event_backup/utils/errors.py
"""Exception taxonomy shared by the pipeline, gateways and HTTP surface."""

from typing import Optional


class EventBackupError(Exception):
    """Base class for all application errors."""


class ValidationError(EventBackupError):
    """Malformed or incomplete alarm payload. Surfaced as 400, never retried."""


class ConfigurationError(EventBackupError):
    """Missing bucket/queue configuration. Surfaced as 500, needs an operator fix."""


class CredentialsError(EventBackupError):
    """Protect credentials could not be resolved or are incomplete."""


class StorageError(EventBackupError):
    """Object store call failed for a reason other than a missing key."""

    def __init__(self, message: str, key: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.key = key
        self.code = code


class QueueError(EventBackupError):
    """Queue call failed."""


class NoVideoDownloadedError(EventBackupError):
    """
    Capture finished its download wait without a new video file.
    The one failure class that is diverted to the application dead-letter queue.
    """

    def __init__(self, event_id: Optional[str] = None, message: str = "No video files were downloaded"):
        super().__init__(message)
        self.event_id = event_id
