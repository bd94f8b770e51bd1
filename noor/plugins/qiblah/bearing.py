import math

KAABA_LAT = 21.4225
KAABA_LNG = 39.8262


def qiblah_bearing(lat: float, lng: float) -> float:
    """Initial great-circle bearing from (lat, lng) to the Kaaba, degrees clockwise from true north in [0, 360)."""
    phi1 = math.radians(lat)
    phi2 = math.radians(KAABA_LAT)
    delta = math.radians(KAABA_LNG - lng)
    y = math.sin(delta) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(delta)
    return math.degrees(math.atan2(y, x)) % 360.0


def distance_km(lat: float, lng: float) -> float:
    """Haversine distance to the Kaaba."""
    phi1, phi2 = math.radians(lat), math.radians(KAABA_LAT)
    dphi = phi2 - phi1
    dlmb = math.radians(KAABA_LNG - lng)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 6371.0 * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
