from typing import Optional, Protocol, Tuple

import requests

from ..core.constants import NOMINATIM_TIMEOUT_S, UNKNOWN_CITY
from ..utils.log import log_line

NOMINATIM_REVERSE_URL = "https://nominatim.openstreetmap.org/reverse"

# Most specific first
_CITY_KEYS = ("city", "town", "village", "municipality", "county", "state")

class Geocoder(Protocol):
    def reverse(self, lat: float, lng: float) -> Tuple[str, Optional[str]]:
        """(city label, ISO country code or None)"""
        ...

def coordinate_label(lat: float, lng: float) -> str:
    return f"{lat:.2f}, {lng:.2f}"

class NominatimGeocoder:
    """
    Reverse lookups against the public Nominatim API.
    Only ever called with obfuscated coordinates; the author's raw position
    never leaves the engine, not even for the origin-region lookup.
    """

    def __init__(self, user_agent: str, timeout_s: float = NOMINATIM_TIMEOUT_S):
        self.user_agent = user_agent
        self.timeout_s = timeout_s

    def reverse(self, lat: float, lng: float) -> Tuple[str, Optional[str]]:
        headers = {"User-Agent": self.user_agent}
        params = {"format": "json", "lat": lat, "lon": lng, "zoom": 10, "addressdetails": 1}
        try:
            r = requests.get(NOMINATIM_REVERSE_URL, params=params, headers=headers, timeout=self.timeout_s)
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            log_line(f"REVERSE GEOCODE FAILED | err={e!r}", "WARN")
            return coordinate_label(lat, lng), None

        addr = data.get("address") if isinstance(data, dict) else None
        if not isinstance(addr, dict):
            return UNKNOWN_CITY, None
        city = next((addr[k] for k in _CITY_KEYS if addr.get(k)), UNKNOWN_CITY)
        cc = addr.get("country_code")
        return str(city), (str(cc).upper() if cc else None)
