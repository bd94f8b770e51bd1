"""
User adhan settings and location, persisted in the settings collection.

Config file values are the defaults; anything saved by the user wins.
"""
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional

from noor.plugins.prayer.constants import DEFAULT_ADHAN_SETTINGS
from noor.plugins.prayer.models import CalculationConfig, Location, NOTIFIABLE_PRAYERS

SETTINGS_COLLECTION = "settings"
ADHAN_SETTINGS_KEY = "adhan_settings"
LOCATION_KEY = "location"


@dataclass
class AdhanSettings:
    voice_id: str = "makkah"
    style_id: str = "full"
    method: int = 2
    school: int = 0
    fajr_angle: Optional[float] = None
    isha_angle: Optional[float] = None
    notifications: Dict[str, bool] = field(default_factory=lambda: {p: True for p in NOTIFIABLE_PRAYERS})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AdhanSettings":
        merged = {**DEFAULT_ADHAN_SETTINGS, **{k: v for k, v in data.items() if v is not None or k.endswith("_angle")}}
        calculation = CalculationConfig.from_dict(merged)
        notifications = {p: True for p in NOTIFIABLE_PRAYERS}
        notifications.update({str(k): bool(v) for k, v in (merged.get("notifications") or {}).items()})
        return cls(
            voice_id=str(merged["voice_id"]),
            style_id=str(merged["style_id"]),
            method=calculation.method,
            school=calculation.school,
            fajr_angle=calculation.fajr_angle,
            isha_angle=calculation.isha_angle,
            notifications=notifications,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def calculation(self) -> CalculationConfig:
        return CalculationConfig(self.method, self.school, self.fajr_angle, self.isha_angle)

    def enabled_prayers(self) -> List[str]:
        return [p for p in NOTIFIABLE_PRAYERS if self.notifications.get(p, False)]


def settings_from_component_config(config: Optional[Dict[str, Any]]) -> AdhanSettings:
    """Flatten the "Prayer Times" config section into AdhanSettings."""
    config = config or {}
    flat: Dict[str, Any] = {}
    flat.update(config.get("calculation") or {})
    adhan = config.get("adhan") or {}
    for key in ("voice_id", "style_id"):
        if key in adhan:
            flat[key] = adhan[key]
    if "notifications" in config:
        flat["notifications"] = config["notifications"]
    return AdhanSettings.from_dict(flat)


class SettingsService:
    def __init__(self, store, component_config: Optional[Dict[str, Any]] = None):
        self.store = store
        self.component_config = component_config or {}
        self.logger = logging.getLogger(self.__class__.__name__)
        self.change_callbacks: List[Callable[[AdhanSettings, Optional[Location]], None]] = []

    def register_change_callback(self, callback: Callable[[AdhanSettings, Optional[Location]], None]) -> None:
        self.change_callbacks.append(callback)

    def update_defaults(self, component_config: Optional[Dict[str, Any]]) -> None:
        """New config file values. Notifies listeners, since defaults may be what is in effect."""
        self.component_config = component_config or {}
        self._notify()

    def load(self) -> AdhanSettings:
        saved = self.store.get(SETTINGS_COLLECTION, ADHAN_SETTINGS_KEY, None)
        defaults = settings_from_component_config(self.component_config)
        if isinstance(saved, dict):
            return AdhanSettings.from_dict({**defaults.to_dict(), **saved})
        return defaults

    def save(self, settings: AdhanSettings) -> None:
        old = self.load()
        self.store.put(SETTINGS_COLLECTION, ADHAN_SETTINGS_KEY, settings.to_dict())
        if old != settings:
            self.logger.info(f"Adhan settings changed: {old} -> {settings}")
            self._notify()

    def get_location(self) -> Optional[Location]:
        saved = Location.from_dict(self.store.get(SETTINGS_COLLECTION, LOCATION_KEY, None))
        return saved or Location.from_dict(self.component_config.get("location"))

    def save_location(self, location: Location) -> None:
        old = self.get_location()
        self.store.put(SETTINGS_COLLECTION, LOCATION_KEY, location.to_dict())
        if old != location:
            self.logger.info(f"Location changed: {old} -> {location}")
            self._notify(location)

    def _notify(self, location: Optional[Location] = None) -> None:
        settings = self.load()
        # The store may drop writes (not open); the caller passes what it just saved
        location = location or self.get_location()
        for callback in self.change_callbacks:
            try:
                callback(settings, location)
            except Exception as e:
                self.logger.error(f"Error in settings change callback: {e}")
