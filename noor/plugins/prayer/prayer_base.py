import requests
from datetime import date
from typing import Dict, Any, Optional, Tuple
import logging
from abc import ABC, abstractmethod

from noor.core.errors import PrayerBackendError
from noor.plugins.prayer.models import CalculationConfig, EXTRA_TIMES, PRAYER_ORDER

ALADHAN_API_BASE = "https://api.aladhan.com/v1"
CUSTOM_METHOD_ID = 99


class PrayerBackend(ABC):
    """Base class for prayer time calculation backends"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def compute_times(
        self,
        lat: float,
        lng: float,
        calculation: CalculationConfig,
        target_date: date,
    ) -> Tuple[Dict[str, str], str]:
        """Compute one day's times
        Returns:
            ({prayer_name: "HH:MM"}, hijri date text)
        Raises:
            requests.RequestException on transport errors, PrayerBackendError on bad payloads
        """
        pass


class AladhanBackend(PrayerBackend):
    """Prayer times backend using api.aladhan.com"""

    PRAYER_NAMES = PRAYER_ORDER + EXTRA_TIMES

    def __init__(self, config: Optional[Dict[str, Any]] = None, session: Optional[requests.Session] = None):
        super().__init__(config)
        self.session = session or requests.Session()
        self.base_url = self.config.get("base_url", ALADHAN_API_BASE)
        self.timeout = self.config.get("timeout", 10)

    def build_params(self, lat: float, lng: float, calculation: CalculationConfig) -> Dict[str, Any]:
        params = {
            "latitude": lat,
            "longitude": lng,
            "method": calculation.method,
            "school": calculation.school,
        }
        if calculation.has_custom_angles:
            # AlAdhan takes "fajrAngle,maghribMinutes,ishaAngle" with method 99
            fajr = "null" if calculation.fajr_angle is None else f"{calculation.fajr_angle:g}"
            isha = "null" if calculation.isha_angle is None else f"{calculation.isha_angle:g}"
            params["method"] = CUSTOM_METHOD_ID
            params["methodSettings"] = f"{fajr},null,{isha}"
        return params

    def compute_times(
        self,
        lat: float,
        lng: float,
        calculation: CalculationConfig,
        target_date: date,
    ) -> Tuple[Dict[str, str], str]:
        url = f"{self.base_url}/timings/{target_date.strftime('%d-%m-%Y')}"
        params = self.build_params(lat, lng, calculation)

        self.logger.info(f"Making API request to {url} with params {params}")
        response = self.session.get(url, params=params, timeout=self.timeout)
        response.raise_for_status()
        try:
            payload = response.json()
        except ValueError as e:
            raise PrayerBackendError(f"Invalid JSON from AlAdhan API: {e}") from e

        if payload.get("code") != 200:
            raise PrayerBackendError(f"Invalid response from AlAdhan API: {payload.get('status')}")

        data = payload.get("data") or {}
        timings = data.get("timings") or {}
        times = {}
        for prayer in self.PRAYER_NAMES:
            value = clean_time(timings[prayer]) if prayer in timings else None
            if value:
                times[prayer] = value
        missing = [p for p in ("Fajr", "Dhuhr", "Asr", "Maghrib", "Isha") if not times.get(p)]
        if missing:
            raise PrayerBackendError(f"AlAdhan response missing times: {', '.join(missing)}")

        hijri = (data.get("date") or {}).get("hijri") or {}
        self.logger.debug(f"Prayer times for {target_date}: {times}")
        return times, format_hijri(hijri)


def clean_time(value: Any) -> Optional[str]:
    """Normalise "05:10 (EET)" style strings to "HH:MM"; None when unparseable."""
    clean = "".join(ch for ch in str(value) if ch.isdigit() or ch == ":")[:5]
    try:
        hour, minute = map(int, clean.split(":"))
    except ValueError:
        return None
    if not (0 <= hour < 24 and 0 <= minute < 60):
        return None
    return f"{hour:02d}:{minute:02d}"


def format_hijri(hijri: Dict[str, Any]) -> str:
    day = hijri.get("day")
    month = (hijri.get("month") or {}).get("en", "")
    year = hijri.get("year")
    if day and month and year:
        return f"{day} {month} {year} AH"
    return hijri.get("date", "") or ""
