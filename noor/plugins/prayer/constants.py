"""
Adhan voices, styles, and calculation choices offered to the user.
"""

ADHAN_OPTIONS = [
    {
        "id": "makkah",
        "name": "Makkah Adhan",
        "muezzin": "Sheikh Ali Mullah",
        "url": "https://www.islamcan.com/audio/adhan/azan1.mp3",
    },
    {
        "id": "madinah",
        "name": "Madinah Adhan",
        "muezzin": "Sheikh Essam Bukhari",
        "url": "https://www.islamcan.com/audio/adhan/azan2.mp3",
    },
    {
        "id": "mishary",
        "name": "Mishary Rashid",
        "muezzin": "Sheikh Mishary Rashid Alafasy",
        "url": "https://www.islamcan.com/audio/adhan/azan3.mp3",
    },
    {
        "id": "alaqsa",
        "name": "Al-Aqsa Adhan",
        "muezzin": "Al-Aqsa Mosque",
        "url": "https://www.islamcan.com/audio/adhan/azan4.mp3",
    },
    {
        "id": "egypt",
        "name": "Egyptian Adhan",
        "muezzin": "Egyptian Style",
        "url": "https://www.islamcan.com/audio/adhan/azan5.mp3",
    },
]

ADHAN_STYLES = [
    {"id": "full", "name": "Full Adhan"},
    {"id": "1v4", "name": "1 Verse 4 Times"},
    {"id": "2v2", "name": "2 Verses 2 Times"},
]

PRAYER_METHODS = {
    1: "University of Islamic Sciences, Karachi",
    2: "Islamic Society of North America (ISNA)",
    3: "Muslim World League (MWL)",
    4: "Umm Al-Qura University, Makkah",
    5: "Egyptian General Authority of Survey",
    7: "Institute of Geophysics, University of Tehran",
    8: "Gulf Region",
    9: "Kuwait",
    10: "Qatar",
    11: "Majlis Ugama Islam Singapura, Singapore",
    12: "Union Organization islamic de France",
    99: "Custom angles",
}

PRAYER_SCHOOLS = {
    0: "Shafi (Standard)",
    1: "Hanafi",
}

DEFAULT_ADHAN_SETTINGS = {
    "voice_id": "makkah",
    "style_id": "full",
    "method": 2,
    "school": 0,
    "fajr_angle": None,
    "isha_angle": None,
    "notifications": {"Fajr": True, "Dhuhr": True, "Asr": True, "Maghrib": True, "Isha": True},
}


def find_voice(voice_id: str):
    """Catalog entry for voice_id, or None."""
    for option in ADHAN_OPTIONS:
        if option["id"] == voice_id:
            return option
    return None
