"""
Prayer time value types: location, calculation config, and the immutable daily table.
"""
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Dict, Optional

PRAYER_ORDER = ["Fajr", "Sunrise", "Dhuhr", "Asr", "Maghrib", "Isha"]
# Sunrise is displayed but never notified
NOTIFIABLE_PRAYERS = ["Fajr", "Dhuhr", "Asr", "Maghrib", "Isha"]
EXTRA_TIMES = ["Imsak", "Midnight"]


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float
    name: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Location"]:
        """Build from {"lat", "lng", "name"}; None when coordinates are missing or invalid."""
        if not isinstance(data, dict):
            return None
        try:
            return cls(lat=float(data["lat"]), lng=float(data["lng"]), name=str(data.get("name") or ""))
        except (KeyError, TypeError, ValueError):
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {"lat": self.lat, "lng": self.lng, "name": self.name}


@dataclass(frozen=True)
class CalculationConfig:
    method: int = 2
    school: int = 0
    fajr_angle: Optional[float] = None
    isha_angle: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CalculationConfig":
        data = data or {}
        return cls(
            method=int(data.get("method", 2)),
            school=int(data.get("school", 0)),
            fajr_angle=_optional_float(data.get("fajr_angle")),
            isha_angle=_optional_float(data.get("isha_angle")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "school": self.school,
            "fajr_angle": self.fajr_angle,
            "isha_angle": self.isha_angle,
        }

    @property
    def has_custom_angles(self) -> bool:
        return self.fajr_angle is not None or self.isha_angle is not None


def table_key(target_date: date, lat: float, lng: float, config: CalculationConfig) -> str:
    """Cache key for one table: date, rounded coordinates and every calculation input."""
    return "|".join([
        target_date.isoformat(),
        f"{round(float(lat), 4):.4f}",
        f"{round(float(lng), 4):.4f}",
        str(config.method),
        str(config.school),
        "-" if config.fajr_angle is None else f"{config.fajr_angle:g}",
        "-" if config.isha_angle is None else f"{config.isha_angle:g}",
    ])


@dataclass(frozen=True)
class PrayerTimeTable:
    """The named times ("HH:MM") of one civil date at one location under one config."""
    date: date
    times: Dict[str, str]
    key: str
    hijri_date: str = ""
    fetched_at: Optional[datetime] = None
    stale: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def time_of(self, name: str) -> Optional[str]:
        return self.times.get(name)

    def as_stale(self) -> "PrayerTimeTable":
        return replace(self, stale=True)

    def to_record(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "times": dict(self.times),
            "key": self.key,
            "hijri_date": self.hijri_date,
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "PrayerTimeTable":
        fetched_at = record.get("fetched_at")
        return cls(
            date=date.fromisoformat(record["date"]),
            times=dict(record.get("times") or {}),
            key=record["key"],
            hijri_date=record.get("hijri_date") or "",
            fetched_at=datetime.fromisoformat(fetched_at) if fetched_at else None,
            metadata=dict(record.get("metadata") or {}),
        )


def _optional_float(value: Any) -> Optional[float]:
    try:
        if value in (None, ""):
            return None
        return float(value)
    except (TypeError, ValueError):
        return None
