"""
Visual and haptic notification channels on top of plyer.

Each channel degrades on its own: a platform without an implementation marks
the channel unsupported, a refusal marks it denied, and the other channels
keep working. reset_permissions() re-enables both after the user grants
access, without restarting anything.
"""
import logging
from typing import Callable, Dict, Optional, Sequence

from plyer import notification as plyer_notification
from plyer import vibrator as plyer_vibrator

from noor.core.errors import PermissionDenied

APP_NAME = "Noor"

NOTIFICATION = "notification"
VIBRATION = "vibration"

GRANTED = "granted"
DENIED = "denied"
UNSUPPORTED = "unsupported"

# Seconds: wait, buzz, pause, buzz
DEFAULT_VIBRATION_PATTERN = (0, 0.2, 0.1, 0.2)


def _plyer_notify(title: str, message: str, timeout: int) -> None:
    plyer_notification.notify(title=title, message=message, app_name=APP_NAME, timeout=timeout)


def _plyer_vibrate(pattern: Sequence[float]) -> None:
    plyer_vibrator.pattern(pattern=list(pattern), repeat=-1)


class PlatformNotifier:
    def __init__(
        self,
        notify_fn: Optional[Callable[[str, str, int], None]] = None,
        vibrate_fn: Optional[Callable[[Sequence[float]], None]] = None,
        timeout: int = 30,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._notify_fn = notify_fn or _plyer_notify
        self._vibrate_fn = vibrate_fn or _plyer_vibrate
        self.timeout = timeout
        self._states: Dict[str, str] = {NOTIFICATION: GRANTED, VIBRATION: GRANTED}

    def channel_state(self, channel: str) -> str:
        return self._states[channel]

    def reset_permissions(self) -> None:
        self.logger.info("Re-enabling notification channels")
        for channel in self._states:
            self._states[channel] = GRANTED

    def notify(self, title: str, message: str) -> bool:
        return self._deliver(NOTIFICATION, lambda: self._notify_fn(title, message, self.timeout))

    def vibrate(self, pattern: Sequence[float] = DEFAULT_VIBRATION_PATTERN) -> bool:
        return self._deliver(VIBRATION, lambda: self._vibrate_fn(pattern))

    def _deliver(self, channel: str, action: Callable[[], None]) -> bool:
        state = self._states[channel]
        if state != GRANTED:
            self.logger.debug(f"Skipping {channel}: {state}")
            return False
        try:
            action()
            return True
        except NotImplementedError:
            self.logger.info(f"{channel} not supported on this platform")
            self._states[channel] = UNSUPPORTED
        except (PermissionError, PermissionDenied) as e:
            self.logger.warning(f"{channel} permission denied: {e}")
            self._states[channel] = DENIED
        except Exception as e:
            # Transient platform failure; try again on the next dispatch
            self.logger.warning(f"{channel} delivery failed: {e}")
        return False
