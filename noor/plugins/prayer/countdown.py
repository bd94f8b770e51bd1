"""
Next-prayer countdown feed for UI surfaces.

Subscribers get a NextPrayerUpdate at least once per second while anyone is
subscribed. The feed reads cached tables only, so it never waits on the
network; the dispatcher and the daily task keep the cache warm.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from noor.plugins.prayer.schedule import format_remaining, next_prayer

FEED_TASK = "prayer_countdown_tick"


@dataclass(frozen=True)
class NextPrayerUpdate:
    name: str
    time: str
    instant: datetime
    remaining: timedelta
    stale: bool = False
    approximate: bool = False

    @property
    def remaining_text(self) -> str:
        return format_remaining(self.remaining)


class NextPrayerFeed:
    def __init__(
        self,
        time_source,
        settings,
        task_manager=None,
        interval: float = 1.0,
        clock: Callable[[], datetime] = datetime.now,
        is_stale: Optional[Callable[[], bool]] = None,
    ):
        self.time_source = time_source
        self.settings = settings
        self.task_manager = task_manager
        self.interval = interval
        self.clock = clock
        # Whether the last sync failed and the cached table is being served
        self.is_stale = is_stale or (lambda: False)
        self.logger = logging.getLogger(self.__class__.__name__)
        self._subscribers: Dict[int, Callable[[NextPrayerUpdate], None]] = {}
        self._next_id = 0
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[NextPrayerUpdate], None]) -> Callable[[], None]:
        """Register callback; returns a function that unsubscribes it."""
        with self._lock:
            token = self._next_id
            self._next_id += 1
            self._subscribers[token] = callback
            first = len(self._subscribers) == 1
        if first and self.task_manager is not None:
            self.task_manager.schedule_task(FEED_TASK, self.publish, self.interval, one_time=False)

        update = self.current()
        if update is not None:
            self._deliver(callback, update)

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)
                empty = not self._subscribers
            if empty and self.task_manager is not None:
                self.task_manager.cancel_task(FEED_TASK)

        return unsubscribe

    def current(self, now: Optional[datetime] = None) -> Optional[NextPrayerUpdate]:
        """The next prayer from cached tables, or None when today has not been synced."""
        now = now or self.clock()
        location = self.settings.get_location()
        if location is None:
            return None
        config = self.settings.load().calculation
        today = self.time_source.get_cached_times(now.date(), location, config)
        if today is None:
            return None
        tomorrow = self.time_source.get_cached_times(now.date() + timedelta(days=1), location, config)
        upcoming = next_prayer(today, now, tomorrow)
        return NextPrayerUpdate(
            name=upcoming.name,
            time=upcoming.time,
            instant=upcoming.instant,
            remaining=upcoming.remaining(now),
            stale=today.stale or self.is_stale(),
            approximate=upcoming.approximate,
        )

    def publish(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())
        if not subscribers:
            return
        update = self.current()
        if update is None:
            return
        for callback in subscribers:
            self._deliver(callback, update)

    def _deliver(self, callback: Callable[[NextPrayerUpdate], None], update: NextPrayerUpdate) -> None:
        try:
            callback(update)
        except Exception as e:
            self.logger.error(f"Error in next prayer subscriber: {e}")
