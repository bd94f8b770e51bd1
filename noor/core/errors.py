"""
Error taxonomy shared by the store, the time source, and the dispatcher.
"""
from typing import Optional


class NoorError(Exception):
    """Base class for all engine errors."""

    retryable = False


class StorageUnavailable(NoorError):
    """The embedded store cannot be opened. The app keeps running network-only."""


class TimeSourceUnavailable(NoorError):
    """No live prayer times and nothing cached for the requested key."""

    retryable = True


class PrayerBackendError(NoorError):
    """The prayer time provider answered with something unusable."""


class AudioResolutionFailed(NoorError):
    """Neither a downloaded blob nor a remote URL is playable for a voice."""


class PermissionDenied(NoorError):
    """A platform channel (notification, vibration, audio) refused to work."""

    def __init__(self, channel: str, reason: Optional[str] = None):
        self.channel = channel
        self.reason = reason
        message = f"Permission denied for {channel}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
