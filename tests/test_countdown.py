from datetime import date, datetime, timedelta

from noor.plugins.prayer.countdown import FEED_TASK, NextPrayerFeed
from noor.plugins.prayer.models import CalculationConfig, Location
from noor.plugins.prayer.service import PrayerTimesService
from noor.plugins.prayer.settings import SettingsService

from conftest import FakeBackend, FakeTaskManager

PRAYER_CONFIG = {"location": {"lat": 30.0444, "lng": 31.2357, "name": "Cairo"}, "calculation": {"method": 5}}
CAIRO = Location(30.0444, 31.2357, "Cairo")
NOW = datetime(2025, 11, 9, 12, 15, 5)


def _feed(store, task_manager=None, is_stale=None):
    service = PrayerTimesService(store, FakeBackend(), clock=lambda: NOW)
    settings = SettingsService(store, PRAYER_CONFIG)
    feed = NextPrayerFeed(service, settings, task_manager=task_manager, clock=lambda: NOW, is_stale=is_stale)
    return feed, service


def test_no_update_before_first_sync(store):
    feed, _ = _feed(store)
    assert feed.current() is None


def test_update_from_cached_table(store):
    feed, service = _feed(store)
    service.get_times_for(CAIRO, CalculationConfig(method=5), NOW.date())

    update = feed.current()
    assert (update.name, update.time) == ("Asr", "15:40")
    assert update.remaining == timedelta(hours=3, minutes=24, seconds=55)
    assert update.remaining_text == "3h 24m 55s left"
    assert not update.stale
    assert not update.approximate


def test_after_isha_uses_prefetched_tomorrow(store):
    feed, service = _feed(store)
    service.get_times_for(CAIRO, CalculationConfig(method=5), NOW.date())
    late = datetime(2025, 11, 9, 22, 0)
    assert feed.current(late).approximate

    service.get_times_for(CAIRO, CalculationConfig(method=5), date(2025, 11, 10))
    update = feed.current(late)
    assert update.name == "Fajr"
    assert update.instant == datetime(2025, 11, 10, 5, 10)
    assert not update.approximate


def test_stale_flag_comes_from_last_sync(store):
    feed, service = _feed(store, is_stale=lambda: True)
    service.get_times_for(CAIRO, CalculationConfig(method=5), NOW.date())
    assert feed.current().stale


def test_subscribe_pushes_immediately_and_ticks_while_subscribed(store):
    task_manager = FakeTaskManager()
    feed, service = _feed(store, task_manager)
    service.get_times_for(CAIRO, CalculationConfig(method=5), NOW.date())
    received = []

    unsubscribe = feed.subscribe(received.append)
    assert received[0].name == "Asr"
    callback, delay, one_time = task_manager.scheduled[FEED_TASK]
    assert delay == 1.0 and not one_time

    callback()
    assert len(received) == 2

    unsubscribe()
    assert FEED_TASK not in task_manager.scheduled
    feed.publish()
    assert len(received) == 2


def test_failing_subscriber_does_not_affect_others(store):
    feed, service = _feed(store, FakeTaskManager())
    service.get_times_for(CAIRO, CalculationConfig(method=5), NOW.date())
    received = []

    def broken(update):
        raise RuntimeError("ui gone")

    feed.subscribe(broken)
    feed.subscribe(received.append)
    feed.publish()
    assert len(received) == 2
