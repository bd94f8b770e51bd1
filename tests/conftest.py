from datetime import date
from typing import Dict, List, Optional

import pytest

from noor.core.store import LocalStore
from noor.plugins.prayer.models import PrayerTimeTable, table_key

TIMES = {
    "Fajr": "05:10",
    "Sunrise": "06:30",
    "Dhuhr": "12:15",
    "Asr": "15:40",
    "Maghrib": "18:05",
    "Isha": "19:25",
}


def make_table(day: date = date(2025, 11, 9), times: Optional[Dict[str, str]] = None, key: Optional[str] = None) -> PrayerTimeTable:
    return PrayerTimeTable(date=day, times=dict(TIMES if times is None else times), key=key or f"{day.isoformat()}|test")


def build_payload(timings: Optional[Dict[str, str]] = None) -> dict:
    return {
        "code": 200,
        "status": "OK",
        "data": {
            "timings": dict(timings or {
                "Fajr": "05:10 (EET)",
                "Sunrise": "06:30 (EET)",
                "Dhuhr": "12:15 (EET)",
                "Asr": "15:40 (EET)",
                "Maghrib": "18:05 (EET)",
                "Isha": "19:25 (EET)",
                "Imsak": "05:00 (EET)",
                "Midnight": "23:45 (EET)",
            }),
            "date": {
                "hijri": {
                    "day": "17",
                    "month": {"en": "Jumada al-Ula"},
                    "year": "1447",
                    "date": "17-05-1447",
                },
            },
        },
    }


class FakeBackend:
    """Prayer backend that returns fixed times, or raises when told to."""

    def __init__(self, times: Optional[Dict[str, str]] = None):
        self.times = dict(times or TIMES)
        self.error: Optional[Exception] = None
        self.calls: List[tuple] = []

    def compute_times(self, lat, lng, calculation, target_date):
        self.calls.append((lat, lng, calculation, target_date))
        if self.error is not None:
            raise self.error
        return dict(self.times), "17 Jumada al-Ula 1447 AH"


class FakeTimeSource:
    """Time source handing out a configurable table per calculation method."""

    def __init__(self, times: Optional[Dict[str, str]] = None):
        self.times_by_method: Dict[int, Dict[str, str]] = {}
        self.default_times = dict(times or TIMES)
        self.error: Optional[Exception] = None
        self.calls: List[dict] = []

    def get_prayer_times(self, lat, lng, config, target_date=None, refresh=True):
        self.calls.append({"config": config, "date": target_date, "refresh": refresh})
        if self.error is not None:
            raise self.error
        times = self.times_by_method.get(config.method, self.default_times)
        return PrayerTimeTable(date=target_date, times=dict(times), key=table_key(target_date, lat, lng, config))


class FakePlayer:
    def __init__(self, volume: float = 0.7):
        self.volume = volume
        self.playing: Dict[str, str] = {}
        self.played: List[tuple] = []
        self.stopped: List[str] = []
        self.error: Optional[Exception] = None

    def play(self, slot, path):
        if self.error is not None:
            raise self.error
        self.playing[slot] = path
        self.played.append((slot, path))

    def stop(self, slot):
        self.stopped.append(slot)
        self.playing.pop(slot, None)

    def is_playing(self, slot):
        return slot in self.playing

    def finish(self, slot):
        self.playing.pop(slot, None)

    def set_volume(self, volume):
        self.volume = volume

    def quit(self):
        self.playing.clear()


class FakeAudioManager:
    def __init__(self):
        self.dispatched: List[str] = []
        self.error: Optional[Exception] = None

    def play_for_dispatch(self, voice_id):
        if self.error is not None:
            raise self.error
        self.dispatched.append(voice_id)

    def reap_finished(self):
        pass


class FakeNotifier:
    def __init__(self):
        self.notifications: List[tuple] = []
        self.vibrations = 0

    def notify(self, title, message):
        self.notifications.append((title, message))
        return True

    def vibrate(self, pattern=None):
        self.vibrations += 1
        return True

    def reset_permissions(self):
        pass


class FakeTaskManager:
    def __init__(self):
        self.scheduled: Dict[str, tuple] = {}
        self.cancelled: List[str] = []

    def schedule_task(self, name, callback, delay, one_time=True):
        self.scheduled[name] = (callback, delay, one_time)

    def cancel_task(self, name):
        self.cancelled.append(name)
        return self.scheduled.pop(name, None) is not None


@pytest.fixture
def store():
    s = LocalStore("sqlite://")
    s.open()
    yield s
    s.close()

