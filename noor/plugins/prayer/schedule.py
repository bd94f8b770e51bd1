"""
Next-prayer computation over a PrayerTimeTable.

Comparison is by minute of day. A prayer whose minute equals now's minute is
"current", not "next". After Isha the next prayer is tomorrow's Fajr, taken
from tomorrow's table when the caller has it and otherwise approximated as
today's Fajr + 24h.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple

from noor.plugins.prayer.models import PRAYER_ORDER, PrayerTimeTable


@dataclass(frozen=True)
class NextPrayer:
    name: str
    time: str
    instant: datetime
    approximate: bool = False

    def remaining(self, now: datetime) -> timedelta:
        return max(self.instant - now, timedelta(0))


def minute_of_day(hhmm: str) -> int:
    hour, minute = hhmm.split(":")
    return int(hour) * 60 + int(minute)


def _instant(on: date, hhmm: str) -> datetime:
    hour, minute = divmod(minute_of_day(hhmm), 60)
    return datetime.combine(on, time(hour, minute))


def ordered_times(table: PrayerTimeTable) -> List[Tuple[str, str]]:
    """(name, "HH:MM") in fixed prayer order, skipping names the table lacks."""
    return [(name, table.times[name]) for name in PRAYER_ORDER if table.times.get(name)]


def next_prayer(
    table: PrayerTimeTable,
    now: datetime,
    tomorrow: Optional[PrayerTimeTable] = None,
) -> NextPrayer:
    current = now.hour * 60 + now.minute
    entries = ordered_times(table)
    if not entries:
        raise ValueError(f"Prayer time table {table.key} has no prayer times")

    for name, hhmm in entries:
        if minute_of_day(hhmm) > current:
            return NextPrayer(name=name, time=hhmm, instant=_instant(table.date, hhmm))

    next_day = table.date + timedelta(days=1)
    if tomorrow is not None and tomorrow.date == next_day and tomorrow.times.get("Fajr"):
        fajr = tomorrow.times["Fajr"]
        return NextPrayer(name="Fajr", time=fajr, instant=_instant(next_day, fajr))

    # A table missing Fajr wraps to its earliest listed prayer
    name = "Fajr" if table.times.get("Fajr") else entries[0][0]
    hhmm = table.times[name]
    return NextPrayer(name=name, time=hhmm, instant=_instant(next_day, hhmm), approximate=True)


def format_remaining(delta: timedelta) -> str:
    total = max(int(delta.total_seconds()), 0)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours}h {minutes}m {seconds}s left"
