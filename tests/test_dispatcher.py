from datetime import date, datetime

import pytest

from noor.core.errors import AudioResolutionFailed, TimeSourceUnavailable
from noor.plugins.prayer.dispatcher import DISPATCH_TASK, DispatcherState, NotificationDispatcher
from noor.plugins.prayer.models import CalculationConfig, Location

from conftest import FakeAudioManager, FakeNotifier, FakeTaskManager, FakeTimeSource

CAIRO = Location(lat=30.0444, lng=31.2357, name="Cairo")


def at(hhmm: str, second: int = 0, day: date = date(2025, 11, 9)) -> datetime:
    hour, minute = map(int, hhmm.split(":"))
    return datetime(day.year, day.month, day.day, hour, minute, second)


@pytest.fixture
def parts():
    return FakeTimeSource(), FakeAudioManager(), FakeNotifier(), FakeTaskManager()


@pytest.fixture
def dispatcher(parts):
    time_source, audio, notifier, task_manager = parts
    d = NotificationDispatcher(time_source, audio, notifier, task_manager=task_manager)
    d.arm(CAIRO, CalculationConfig())
    d.unlock_audio()
    return d


def test_arm_waits_for_audio_unlock(parts):
    time_source, audio, notifier, task_manager = parts
    d = NotificationDispatcher(time_source, audio, notifier, task_manager=task_manager)
    d.arm(CAIRO, CalculationConfig())
    assert d.state == DispatcherState.IDLE
    assert DISPATCH_TASK not in task_manager.scheduled

    d.tick(at("12:15"))
    assert notifier.notifications == []

    d.unlock_audio()
    assert d.state == DispatcherState.ARMED
    _, delay, one_time = task_manager.scheduled[DISPATCH_TASK]
    assert delay == 30
    assert not one_time


def test_three_ticks_in_one_minute_dispatch_once(dispatcher, parts):
    _, audio, notifier, _ = parts
    for second in (0, 20, 40):
        dispatcher.tick(at("12:15", second))
    dispatcher.tick(at("12:16", 0))

    assert len(notifier.notifications) == 1
    title, body = notifier.notifications[0]
    assert title == "Prayer Time: Dhuhr"
    assert "Cairo" in body
    assert notifier.vibrations == 1
    assert audio.dispatched == ["makkah"]
    assert dispatcher.ledger.last_key == ("Dhuhr", "12:15")
    assert dispatcher.state == DispatcherState.ARMED


def test_sunrise_and_disabled_prayers_are_not_dispatched(parts):
    time_source, audio, notifier, task_manager = parts
    d = NotificationDispatcher(time_source, audio, notifier, task_manager=task_manager, enabled_prayers=["Fajr", "Isha"])
    d.arm(CAIRO, CalculationConfig())
    d.unlock_audio()

    d.tick(at("06:30"))
    d.tick(at("12:15"))
    assert notifier.notifications == []

    d.tick(at("19:25"))
    assert notifier.notifications[0][0] == "Prayer Time: Isha"


def test_config_change_resets_dedup(dispatcher, parts):
    time_source, _, notifier, _ = parts
    same_asr = {"Fajr": "05:10", "Dhuhr": "12:00", "Asr": "14:00", "Maghrib": "17:00", "Isha": "18:30"}
    time_source.times_by_method = {2: same_asr, 3: same_asr}

    dispatcher.tick(at("14:00", 5))
    dispatcher.tick(at("14:00", 35))
    assert len(notifier.notifications) == 1

    dispatcher.reconfigure(config=CalculationConfig(method=3))
    dispatcher.tick(at("14:00", 50))

    assert [n[0] for n in notifier.notifications] == ["Prayer Time: Asr", "Prayer Time: Asr"]
    assert dispatcher.config.method == 3
    # The new configuration was fetched live
    assert time_source.calls[-2]["config"].method == 3
    assert time_source.calls[-2]["refresh"] is True


def test_failing_fetch_does_not_stop_ticking(dispatcher, parts):
    time_source, _, notifier, _ = parts
    time_source.error = TimeSourceUnavailable("offline")
    dispatcher.tick(at("12:15", 0))
    assert notifier.notifications == []

    time_source.error = None
    dispatcher.tick(at("12:15", 30))
    assert len(notifier.notifications) == 1


def test_channel_failures_are_independent_and_keep_the_ledger(dispatcher, parts):
    _, audio, notifier, _ = parts
    audio.error = AudioResolutionFailed("no audio")

    dispatcher.tick(at("12:15", 0))
    dispatcher.tick(at("12:15", 30))

    assert len(notifier.notifications) == 1
    assert notifier.vibrations == 1
    assert dispatcher.ledger.last_key == ("Dhuhr", "12:15")


def test_fetch_finished_after_reconfigure_is_discarded(parts):
    _, audio, notifier, task_manager = parts

    class RacingTimeSource(FakeTimeSource):
        dispatcher = None

        def get_prayer_times(self, lat, lng, config, target_date=None, refresh=True):
            table = super().get_prayer_times(lat, lng, config, target_date, refresh)
            if len(self.calls) == 1:
                self.dispatcher.reconfigure(config=CalculationConfig(method=4))
            return table

    time_source = RacingTimeSource()
    d = NotificationDispatcher(time_source, audio, notifier, task_manager=task_manager)
    time_source.dispatcher = d
    d.arm(CAIRO, CalculationConfig())
    d.unlock_audio()

    d.tick(at("12:15", 0))
    assert notifier.notifications == []
    assert d.table is None

    d.tick(at("12:15", 30))
    assert len(notifier.notifications) == 1
    assert d.table.key.split("|")[3] == "4"


def test_overlapping_tick_is_dropped(dispatcher, parts):
    time_source = parts[0]
    dispatcher._tick_lock.acquire()
    try:
        dispatcher.tick(at("12:15"))
    finally:
        dispatcher._tick_lock.release()
    assert time_source.calls == []


def test_disarm_is_idempotent_and_final(dispatcher, parts):
    _, _, notifier, task_manager = parts
    dispatcher.disarm()
    dispatcher.disarm()

    assert dispatcher.state == DispatcherState.IDLE
    assert DISPATCH_TASK not in task_manager.scheduled
    assert task_manager.cancelled == [DISPATCH_TASK, DISPATCH_TASK]

    dispatcher.tick(at("12:15"))
    assert notifier.notifications == []


def test_date_roll_loads_the_new_day(dispatcher, parts):
    time_source = parts[0]
    dispatcher.tick(at("23:59"))
    dispatcher.tick(at("05:10", day=date(2025, 11, 10)))

    assert dispatcher.table.date == date(2025, 11, 10)
    assert parts[2].notifications[0][0] == "Prayer Time: Fajr"
    fetched_days = [c["date"] for c in time_source.calls]
    assert date(2025, 11, 10) in fetched_days


def test_location_arriving_after_unlock_starts_polling(parts):
    time_source, audio, notifier, task_manager = parts
    d = NotificationDispatcher(time_source, audio, notifier, task_manager=task_manager)
    d.unlock_audio()
    assert d.state == DispatcherState.IDLE

    d.reconfigure(location=CAIRO, config=CalculationConfig(method=5), voice_id="egypt")

    assert d.state == DispatcherState.ARMED
    assert (d.location, d.config.method, d.voice_id) == (CAIRO, 5, "egypt")
    assert DISPATCH_TASK in task_manager.scheduled
    d.tick(at("12:15"))
    assert len(notifier.notifications) == 1
    assert audio.dispatched == ["egypt"]


def test_settings_change_after_disarm_does_not_restart(dispatcher, parts):
    task_manager = parts[3]
    dispatcher.disarm()

    dispatcher.reconfigure(config=CalculationConfig(method=4))
    dispatcher.unlock_audio()

    assert dispatcher.state == DispatcherState.IDLE
    assert dispatcher.config.method == 4
    assert DISPATCH_TASK not in task_manager.scheduled

    dispatcher.arm(CAIRO, CalculationConfig())
    assert dispatcher.state == DispatcherState.ARMED
