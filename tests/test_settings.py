from noor.plugins.prayer.models import CalculationConfig, Location
from noor.plugins.prayer.settings import AdhanSettings, SettingsService, settings_from_component_config

PRAYER_CONFIG = {
    "location": {"lat": 21.4225, "lng": 39.8262, "name": "Makkah"},
    "calculation": {"method": 4, "school": 1},
    "adhan": {"voice_id": "madinah", "style_id": "full"},
    "notifications": {"Fajr": True, "Dhuhr": False},
}


def test_component_config_is_the_default():
    settings = settings_from_component_config(PRAYER_CONFIG)
    assert settings.voice_id == "madinah"
    assert settings.calculation == CalculationConfig(method=4, school=1)
    assert settings.enabled_prayers() == ["Fajr", "Asr", "Maghrib", "Isha"]


def test_saved_settings_win_and_notify(store):
    service = SettingsService(store, PRAYER_CONFIG)
    changes = []
    service.register_change_callback(lambda settings, location: changes.append((settings, location)))

    settings = service.load()
    settings.method = 99
    settings.fajr_angle = 18.0
    settings.isha_angle = 17.0
    service.save(settings)

    loaded = service.load()
    assert loaded.calculation == CalculationConfig(method=99, school=1, fajr_angle=18.0, isha_angle=17.0)
    assert len(changes) == 1
    assert changes[0][1] == Location(21.4225, 39.8262, "Makkah")

    service.save(loaded)
    assert len(changes) == 1


def test_saved_location_overrides_config(store):
    service = SettingsService(store, PRAYER_CONFIG)
    changes = []
    service.register_change_callback(lambda settings, location: changes.append(location))

    cairo = Location(30.0444, 31.2357, "Cairo")
    service.save_location(cairo)
    assert service.get_location() == cairo
    assert changes == [cairo]


def test_broken_callback_does_not_block_others(store):
    service = SettingsService(store, PRAYER_CONFIG)
    seen = []

    def broken(settings, location):
        raise RuntimeError("listener bug")

    service.register_change_callback(broken)
    service.register_change_callback(lambda settings, location: seen.append(settings.voice_id))
    service.update_defaults({**PRAYER_CONFIG, "adhan": {"voice_id": "egypt"}})
    assert seen == ["egypt"]


def test_from_dict_ignores_unknown_prayers_default_on():
    settings = AdhanSettings.from_dict({"notifications": {"Isha": False}})
    assert settings.notifications["Fajr"] is True
    assert settings.notifications["Isha"] is False
    assert settings.voice_id == "makkah"
