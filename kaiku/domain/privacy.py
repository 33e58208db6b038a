"""
Location privacy: nothing finer than the privacy floor ever leaves this module.

obfuscate()    - fixed-magnitude random displacement applied once, before a
                 location is persisted or transmitted.
snap_to_grid() - rounding to a decimal grid, clamped so the grid is never
                 finer than PRIVACY_GRID_MAX_DECIMALS. Cluster centers pass
                 through it on export (Cluster.to_feature).
"""
import math
import random
from typing import Optional, Tuple

from .geo import normalize, _latlon_from_xy, wrap_lng
from ..core.constants import (
    OBFUSCATION_MIN_M, OBFUSCATION_MAX_M, PRIVACY_GRID_MAX_DECIMALS
)

_SYSTEM_RNG = random.SystemRandom()

def obfuscate(
    raw_lat: float,
    raw_lng: float,
    rng: Optional[random.Random] = None,
    min_m: float = OBFUSCATION_MIN_M,
    max_m: float = OBFUSCATION_MAX_M,
) -> Tuple[float, float]:
    """
    Displace a raw device coordinate by a random bearing and a distance drawn
    uniformly from [min_m, max_m].

    The magnitude does not depend on any display zoom. min_m is floored at
    1 m so the result can never equal the input. Close to a pole the
    latitude offset is mirrored rather than clamped away.

    Args:
        raw_lat, raw_lng: True position (clamped / wrapped before use)
        rng: Random source; defaults to the OS CSPRNG. Tests pass a seeded one.

    Returns:
        (lat, lng) with lat in [-90, 90] and lng in [-180, 180)
    """
    lat0, lng0 = normalize(raw_lat, raw_lng)
    r = rng or _SYSTEM_RNG
    lo = max(1.0, float(min_m))
    hi = max(lo, float(max_m))

    dist = r.uniform(lo, hi)
    bearing = r.uniform(0.0, 2.0 * math.pi)
    x = dist * math.sin(bearing)
    y = dist * math.cos(bearing)

    lat, lng = _latlon_from_xy(lat0, lng0, x, y)
    if lat > 90.0 or lat < -90.0:
        lat, lng = _latlon_from_xy(lat0, lng0, x, -y)
    lat = max(-90.0, min(90.0, lat))
    lng = wrap_lng(lng)

    if (lat, lng) == (lat0, lng0):
        # Only reachable through float absorption at extreme inputs
        lat, lng = _latlon_from_xy(lat0, lng0, 0.0, -lo if lat0 > 0 else lo)
        lng = wrap_lng(lng)
    return lat, lng

def clamp_precision(precision: int) -> int:
    return max(0, min(int(precision), PRIVACY_GRID_MAX_DECIMALS))

def _round_half_up(x: float, factor: float) -> float:
    return math.floor(x * factor + 0.5) / factor

def snap_to_grid(lat: float, lng: float, precision: int) -> Tuple[float, float]:
    """
    Round (lat, lng) to `precision` decimals, never finer than the privacy
    floor. The clamp is applied here, callers cannot opt out of it.
    """
    lat, lng = normalize(lat, lng)
    p = clamp_precision(precision)
    factor = 10.0 ** p
    slat = max(-90.0, min(90.0, _round_half_up(lat, factor)))
    slng = wrap_lng(_round_half_up(lng, factor))
    return round(slat, p), round(slng, p)
