"""
Tests for geo.py and geocode_api.py - distance math and reverse geocoding.

These tests verify:
- Equirectangular projection helpers
- Haversine distance
- Coordinate normalization (antimeridian wrap, pole clamp)
- Reverse geocoding (with mocked Nominatim API)
"""

import pytest
import requests
from unittest.mock import Mock, patch

from kaiku.domain.geo import (
    _xy_m,
    _latlon_from_xy,
    haversine_m,
    is_remote_post,
    normalize,
    wrap_lng,
)
from kaiku.adapters.geocode_api import NominatimGeocoder, coordinate_label
from kaiku.core.constants import UNKNOWN_CITY


class TestCoordinateProjection:
    """Tests for equirectangular projection helpers."""

    def test_xy_m_at_origin(self):
        """Point at origin should map to (0, 0)."""
        x, y = _xy_m(60.17, 24.94, 60.17, 24.94)
        assert abs(x) < 0.01
        assert abs(y) < 0.01

    def test_xy_m_north(self):
        """Moving north increases y."""
        x, y = _xy_m(60.17, 24.94, 60.18, 24.94)
        assert abs(x) < 1
        assert y > 1000  # ~1.1km north

    def test_latlon_from_xy_roundtrip(self):
        """Converting lat/lon -> xy -> lat/lon should be identity."""
        lat0, lon0 = 60.1699, 24.9384
        lat1, lon1 = 60.1750, 24.9500

        x, y = _xy_m(lat0, lon0, lat1, lon1)
        lat2, lon2 = _latlon_from_xy(lat0, lon0, x, y)

        assert abs(lat2 - lat1) < 0.0001
        assert abs(lon2 - lon1) < 0.0001

    def test_projection_finite_at_pole(self):
        """cos(lat) is floored, so offsets at the pole stay finite."""
        lat, lon = _latlon_from_xy(90.0, 0.0, 1000.0, 0.0)
        assert lat == 90.0
        assert 0 < lon < 1.0


class TestHaversineDistance:
    """Tests for haversine distance calculation."""

    def test_same_point_zero_distance(self):
        assert abs(haversine_m(60.17, 24.94, 60.17, 24.94)) < 0.01

    def test_known_distance(self):
        """Helsinki -> Tallinn is roughly 80 km."""
        dist = haversine_m(60.1699, 24.9384, 59.4370, 24.7536)
        assert 78_000 < dist < 84_000

    def test_across_antimeridian(self):
        """Two points either side of 180 are close, not half a world apart."""
        dist = haversine_m(0.0, 179.99, 0.0, -179.99)
        assert dist < 3000


class TestNormalize:
    """Tests for lat clamp and lng wrap."""

    def test_wrap_into_range(self):
        assert wrap_lng(190.0) == pytest.approx(-170.0)
        assert wrap_lng(-190.0) == pytest.approx(170.0)

    def test_180_wraps_to_minus_180(self):
        assert wrap_lng(180.0) == -180.0

    def test_lat_clamped(self):
        assert normalize(95.0, 0.0) == (90.0, 0.0)
        assert normalize(-95.0, 0.0) == (-90.0, 0.0)


class TestRemotePost:
    """Author farther than the threshold from the target is remote."""

    def test_local_post(self):
        assert is_remote_post(60.17, 24.94, 60.20, 24.90, 25.0) is False

    def test_remote_post(self):
        # Helsinki -> Berlin
        assert is_remote_post(60.17, 24.94, 52.52, 13.40, 25.0) is True


class TestReverseGeocode:
    """Tests for Nominatim reverse geocoding (mocked API)."""

    @patch('kaiku.adapters.geocode_api.requests.get')
    def test_city_and_country(self, mock_get):
        mock_response = Mock()
        mock_response.json.return_value = {
            "address": {"city": "Helsinki", "country_code": "fi"}
        }
        mock_get.return_value = mock_response

        city, cc = NominatimGeocoder("TestAgent").reverse(60.17, 24.94)

        assert city == "Helsinki"
        assert cc == "FI"
        mock_get.assert_called_once()
        assert mock_get.call_args.kwargs["headers"]["User-Agent"] == "TestAgent"

    @patch('kaiku.adapters.geocode_api.requests.get')
    def test_falls_back_to_town(self, mock_get):
        mock_response = Mock()
        mock_response.json.return_value = {"address": {"town": "Porvoo"}}
        mock_get.return_value = mock_response

        assert NominatimGeocoder("TestAgent").reverse(60.39, 25.66) == ("Porvoo", None)

    @patch('kaiku.adapters.geocode_api.requests.get')
    def test_no_address_is_unknown(self, mock_get):
        """Open sea: no address block."""
        mock_response = Mock()
        mock_response.json.return_value = {"error": "Unable to geocode"}
        mock_get.return_value = mock_response

        assert NominatimGeocoder("TestAgent").reverse(59.0, 21.0) == (UNKNOWN_CITY, None)

    @patch('kaiku.adapters.geocode_api.requests.get')
    def test_network_error_uses_coordinates(self, mock_get):
        """Network errors degrade to a coordinate label."""
        mock_get.side_effect = requests.ConnectionError("Network error")

        city, cc = NominatimGeocoder("TestAgent").reverse(60.171, 24.938)

        assert city == coordinate_label(60.171, 24.938) == "60.17, 24.94"
        assert cc is None
