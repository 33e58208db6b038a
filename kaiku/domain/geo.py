import math
from typing import Tuple

EARTH_RADIUS_M = 6371000.0

# cos(lat) floor for the local projection; keeps polar longitude offsets finite
_MIN_COS_LAT = 0.01

def clamp_lat(lat: float) -> float:
    return max(-90.0, min(90.0, float(lat)))

def wrap_lng(lng: float) -> float:
    """Wrap into [-180, 180)."""
    x = (float(lng) + 180.0) % 360.0 - 180.0
    # float modulo can round up to exactly 180
    return -180.0 if x >= 180.0 else x

def normalize(lat: float, lng: float) -> Tuple[float, float]:
    return clamp_lat(lat), wrap_lng(lng)

def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, a)))

def _xy_m(lat0: float, lon0: float, lat: float, lon: float) -> Tuple[float, float]:
    """
    Equirectangular projection around (lat0, lon0) -> meters.

    Good enough for offsets of a few kilometers, which is all the
    obfuscation ever moves a point.
    """
    cos0 = max(math.cos(math.radians(lat0)), _MIN_COS_LAT)
    x = math.radians(lon - lon0) * EARTH_RADIUS_M * cos0
    y = math.radians(lat - lat0) * EARTH_RADIUS_M
    return x, y

def _latlon_from_xy(lat0: float, lon0: float, x: float, y: float) -> Tuple[float, float]:
    """Inverse of _xy_m: meters -> (lat, lon), unclamped."""
    cos0 = max(math.cos(math.radians(lat0)), _MIN_COS_LAT)
    lat = lat0 + math.degrees(y / EARTH_RADIUS_M)
    lon = lon0 + math.degrees(x / (EARTH_RADIUS_M * cos0))
    return lat, lon

def is_remote_post(author_lat: float, author_lng: float,
                   target_lat: float, target_lng: float,
                   threshold_km: float) -> bool:
    """True when the author posts farther than threshold_km from where they are."""
    return haversine_m(author_lat, author_lng, target_lat, target_lng) > threshold_km * 1000.0
