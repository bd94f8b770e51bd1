"""
Service layer: cache-or-fetch decision for prayer time tables.

The provider computes; this layer owns the cache contract. A live result
always wins and is written through to the local store before it is
returned. A failed fetch falls back to the cached table for the exact key,
tagged stale. With nothing cached the failure surfaces as
TimeSourceUnavailable.
"""
import logging
from datetime import date, datetime
from typing import Callable, List, Optional

import requests
from sqlalchemy.exc import SQLAlchemyError

from noor.core.errors import PrayerBackendError, TimeSourceUnavailable
from noor.core.store import NOT_FOUND
from noor.plugins.prayer.models import CalculationConfig, Location, PrayerTimeTable, table_key
from noor.plugins.prayer.prayer_base import AladhanBackend, PrayerBackend

PRAYER_COLLECTION = "prayer_times"


class PrayerTimesService:
    def __init__(self, store, backend: Optional[PrayerBackend] = None, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.backend = backend or AladhanBackend()
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

    def get_prayer_times(
        self,
        lat: float,
        lng: float,
        config: CalculationConfig,
        target_date: Optional[date] = None,
        refresh: bool = True,
    ) -> PrayerTimeTable:
        """Return the table for (date, location, config), live when possible."""
        target_date = target_date or self.clock().date()
        key = table_key(target_date, lat, lng, config)
        cached = self._load(key)

        if cached is not None and not refresh:
            self.logger.debug(f"Serving cached prayer times for {key}")
            return cached

        try:
            times, hijri_date = self.backend.compute_times(lat, lng, config, target_date)
        except (requests.RequestException, PrayerBackendError) as e:
            if cached is not None:
                self.logger.warning(f"Prayer time fetch failed for {key}, serving stale cache: {e}")
                return cached.as_stale()
            self.logger.error(f"Prayer time fetch failed for {key} and nothing cached: {e}")
            raise TimeSourceUnavailable(f"Unable to sync prayer times for {target_date}") from e

        table = PrayerTimeTable(
            date=target_date,
            times=times,
            key=key,
            hijri_date=hijri_date,
            fetched_at=self.clock(),
            metadata={"lat": lat, "lng": lng, **config.to_dict()},
        )
        self.save_prayer_times(table)
        return table

    def get_times_for(self, location: Location, config: CalculationConfig, target_date: Optional[date] = None, refresh: bool = True) -> PrayerTimeTable:
        return self.get_prayer_times(location.lat, location.lng, config, target_date, refresh=refresh)

    def get_cached_times(self, target_date: date, location: Location, config: CalculationConfig) -> Optional[PrayerTimeTable]:
        """Cached table for the exact key, never touching the network."""
        return self._load(table_key(target_date, location.lat, location.lng, config))

    def save_prayer_times(self, table: PrayerTimeTable) -> None:
        """Write-through. Storage problems are logged; the live table is still served."""
        try:
            self.store.put(PRAYER_COLLECTION, table.key, table.to_record())
        except SQLAlchemyError as e:
            self.logger.warning(f"Could not cache prayer times {table.key}: {e}")

    def list_cached_tables(self) -> List[PrayerTimeTable]:
        return [PrayerTimeTable.from_record(r) for r in self.store.get_all(PRAYER_COLLECTION) if isinstance(r, dict)]

    def _load(self, key: str) -> Optional[PrayerTimeTable]:
        try:
            record = self.store.get(PRAYER_COLLECTION, key)
        except SQLAlchemyError as e:
            self.logger.warning(f"Could not read cached prayer times {key}: {e}")
            return None
        if record is NOT_FOUND or not isinstance(record, dict):
            return None
        try:
            return PrayerTimeTable.from_record(record)
        except (KeyError, TypeError, ValueError) as e:
            self.logger.warning(f"Ignoring unreadable cached table {key}: {e}")
            return None
