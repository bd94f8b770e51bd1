"""
Background notification dispatcher.

A recurring task-manager timer calls tick(). Each tick compares the current
wall-clock minute with the loaded table and fires every channel at most once
per (prayer, "HH:MM") in a running session. Settings changes arrive as a
queued reconfiguration, applied at the start of the next tick, which also
clears the ledger and forces a table refresh.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

from noor.core.errors import AudioResolutionFailed, NoorError
from noor.plugins.prayer.models import CalculationConfig, Location, NOTIFIABLE_PRAYERS, PrayerTimeTable

DISPATCH_TASK = "prayer_dispatcher_tick"
DEFAULT_INTERVAL = 30

DedupKey = Tuple[str, str]


class DispatcherState:
    """Dispatcher lifecycle. DISPATCHING only holds while a tick fans out."""
    IDLE = "idle"
    ARMED = "armed"
    DISPATCHING = "dispatching"


class NotificationLedger:
    """The last (prayer, "HH:MM") that triggered a dispatch."""

    def __init__(self):
        self.last_key: Optional[DedupKey] = None

    def should_dispatch(self, key: DedupKey) -> bool:
        return key != self.last_key

    def mark(self, key: DedupKey) -> None:
        self.last_key = key

    def reset(self) -> None:
        self.last_key = None


@dataclass
class _Reconfiguration:
    location: Optional[Location] = None
    config: Optional[CalculationConfig] = None
    notifications: Optional[List[str]] = None
    voice_id: Optional[str] = None


class NotificationDispatcher:
    def __init__(
        self,
        time_source,
        audio_manager,
        notifier,
        task_manager=None,
        interval: int = DEFAULT_INTERVAL,
        voice_id: str = "makkah",
        enabled_prayers: Optional[Iterable[str]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.time_source = time_source
        self.audio_manager = audio_manager
        self.notifier = notifier
        self.task_manager = task_manager
        self.interval = interval
        self.voice_id = voice_id
        self.enabled_prayers = list(enabled_prayers if enabled_prayers is not None else NOTIFIABLE_PRAYERS)
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

        self.state = DispatcherState.IDLE
        self.ledger = NotificationLedger()
        self.location: Optional[Location] = None
        self.config: Optional[CalculationConfig] = None
        self.table: Optional[PrayerTimeTable] = None
        self.audio_unlocked = False
        # Set by disarm(); only arm() may start polling again
        self._disarmed = False
        self.dispatch_count = 0

        self._needs_refresh = True
        self._generation = 0
        self._pending: Optional[_Reconfiguration] = None
        self._lock = threading.Lock()       # guards state, pending, generation
        self._tick_lock = threading.Lock()  # a tick never overlaps the next

    # Lifecycle

    def arm(self, location: Location, config: CalculationConfig) -> None:
        """Set where and how to compute; starts polling once audio is unlocked too."""
        with self._lock:
            self.location = location
            self.config = config
            self._pending = None
            self._disarmed = False
            self._generation += 1
            self._needs_refresh = True
            self.table = None
            self.ledger.reset()
        self.logger.info(f"Dispatcher armed for {location.name or (location.lat, location.lng)} with {config}")
        self._start_if_ready()

    def unlock_audio(self) -> None:
        """The user-gesture/permission step. Arms the dispatcher if a location is already known."""
        self.audio_unlocked = True
        self.logger.info("Audio unlocked")
        self._start_if_ready()

    def disarm(self) -> None:
        """Stop polling. Idempotent; nothing fires after this returns."""
        with self._lock:
            was_armed = self.state != DispatcherState.IDLE
            self.state = DispatcherState.IDLE
            self._disarmed = True
            self._generation += 1
            self._pending = None
        if self.task_manager is not None:
            self.task_manager.cancel_task(DISPATCH_TASK)
        if was_armed:
            self.logger.info("Dispatcher disarmed")

    @property
    def is_armed(self) -> bool:
        return self.state != DispatcherState.IDLE

    def _start_if_ready(self) -> None:
        with self._lock:
            if self._disarmed:
                return
            if self.location is None or self.config is None or not self.audio_unlocked:
                self.logger.debug("Dispatcher waiting for location and audio unlock")
                return
            if self.state != DispatcherState.IDLE:
                return
            self.state = DispatcherState.ARMED
        if self.task_manager is not None:
            self.task_manager.schedule_task(DISPATCH_TASK, self.tick, self.interval, one_time=False)
        self.logger.info(f"Dispatcher polling every {self.interval}s")

    def reconfigure(
        self,
        location: Optional[Location] = None,
        config: Optional[CalculationConfig] = None,
        notifications: Optional[Iterable[str]] = None,
        voice_id: Optional[str] = None,
    ) -> None:
        """
        Settings change. While polling, it is queued and the next tick applies it
        before deciding anything. While idle there is no tick, so it applies now
        and may complete arming (e.g. the location arrives after the unlock).
        """
        with self._lock:
            if self.state == DispatcherState.IDLE:
                pending = _Reconfiguration(location, config, list(notifications) if notifications is not None else None, voice_id)
                self._apply(pending)
                self._generation += 1
                idle = True
            else:
                pending = self._pending or _Reconfiguration()
                if location is not None:
                    pending.location = location
                if config is not None:
                    pending.config = config
                if notifications is not None:
                    pending.notifications = list(notifications)
                if voice_id is not None:
                    pending.voice_id = voice_id
                self._pending = pending
                # Invalidate any fetch already in flight
                self._generation += 1
                idle = False
        if idle:
            self._start_if_ready()
        else:
            self.logger.info("Dispatcher reconfiguration queued")

    def request_refresh(self) -> None:
        """Reload the table (cache-first) on the next tick, e.g. after the daily prefetch."""
        with self._lock:
            self.table = None

    def _apply_pending(self) -> int:
        with self._lock:
            pending, self._pending = self._pending, None
            if pending is not None:
                self._apply(pending)
                self.logger.info("Applied dispatcher reconfiguration")
            return self._generation

    def _apply(self, pending: _Reconfiguration) -> None:
        if pending.location is not None and pending.location != self.location:
            self.location = pending.location
            self._reset_for_change()
        if pending.config is not None and pending.config != self.config:
            self.config = pending.config
            self._reset_for_change()
        if pending.notifications is not None:
            self.enabled_prayers = pending.notifications
        if pending.voice_id is not None:
            self.voice_id = pending.voice_id

    def _reset_for_change(self) -> None:
        self.ledger.reset()
        self.table = None
        self._needs_refresh = True

    # Tick

    def tick(self, now: Optional[datetime] = None) -> None:
        """One polling cycle. Errors are logged; the timer keeps running."""
        if not self._tick_lock.acquire(blocking=False):
            self.logger.warning("Previous tick still running; dropping this one")
            return
        try:
            if self.state == DispatcherState.IDLE:
                return
            self._tick(now or self.clock())
        except Exception as e:
            self.logger.exception(f"Dispatcher tick failed: {e}")
        finally:
            self._tick_lock.release()

    def _tick(self, now: datetime) -> None:
        generation = self._apply_pending()
        self.audio_manager.reap_finished()

        table = self._ensure_table(now, generation)
        if table is None:
            return

        current = now.strftime("%H:%M")
        for name in NOTIFIABLE_PRAYERS:
            if name not in self.enabled_prayers:
                continue
            if table.time_of(name) != current:
                continue
            key = (name, current)
            if not self.ledger.should_dispatch(key):
                continue
            with self._lock:
                if self.state == DispatcherState.IDLE or generation != self._generation:
                    self.logger.info("Settings changed during tick; deferring decision")
                    return
                self.ledger.mark(key)
                self.state = DispatcherState.DISPATCHING
            try:
                self._dispatch(name, current)
            finally:
                with self._lock:
                    if self.state == DispatcherState.DISPATCHING:
                        self.state = DispatcherState.ARMED

    def _ensure_table(self, now: datetime, generation: int) -> Optional[PrayerTimeTable]:
        table = self.table
        if table is not None and table.date == now.date() and not self._needs_refresh:
            return table

        location, config = self.location, self.config
        if location is None or config is None:
            return None
        refresh = self._needs_refresh
        try:
            table = self.time_source.get_prayer_times(
                location.lat, location.lng, config, now.date(), refresh=refresh
            )
        except NoorError as e:
            self.logger.warning(f"No prayer times this tick: {e}")
            return None

        with self._lock:
            if generation != self._generation or self.state == DispatcherState.IDLE:
                self.logger.info("Discarding prayer times fetched under a previous configuration")
                return None
            self.table = table
            # A stale table keeps the refresh pending for the next tick
            self._needs_refresh = table.stale
        if table.stale:
            self.logger.warning(f"Using stale prayer times for {table.date}")
        else:
            self._prefetch_tomorrow(location, config, now.date())
        return table

    def _prefetch_tomorrow(self, location: Location, config: CalculationConfig, today) -> None:
        """Warm the cache with tomorrow's table so the countdown can wrap past Isha."""
        tomorrow = today + timedelta(days=1)
        try:
            self.time_source.get_prayer_times(location.lat, location.lng, config, tomorrow, refresh=False)
        except NoorError as e:
            self.logger.debug(f"Could not prefetch prayer times for {tomorrow}: {e}")

    def _dispatch(self, name: str, hhmm: str) -> None:
        location = self.location
        place = location.name if location and location.name else "your location"
        self.dispatch_count += 1
        self.logger.info(f"Dispatching {name} at {hhmm} for {place}")

        try:
            self.notifier.notify(f"Prayer Time: {name}", f"It is time for {name} prayer in {place} ({hhmm}).")
        except Exception as e:
            self.logger.warning(f"Notification for {name} failed: {e}")

        try:
            self.notifier.vibrate()
        except Exception as e:
            self.logger.warning(f"Vibration for {name} failed: {e}")

        try:
            self.audio_manager.play_for_dispatch(self.voice_id)
        except AudioResolutionFailed as e:
            self.logger.error(f"Adhan playback failed for {name}: {e}")
        except Exception as e:
            self.logger.exception(f"Unexpected adhan playback error for {name}: {e}")
