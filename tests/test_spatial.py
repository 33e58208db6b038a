"""
Tests for spatial.py - degree grid cells and the zoom -> resolution table.
"""

import random

import pytest

from kaiku.domain.spatial import (
    MAX_RESOLUTION,
    boundary_of,
    cell_for,
    cell_size_deg,
    center_of,
    parse_cell,
    resolution_for,
)


class TestResolutionFor:
    """Zoom -> resolution step function."""

    def test_known_steps(self):
        assert resolution_for(0) == 0
        assert resolution_for(3) == 1
        assert resolution_for(9) == 6
        assert resolution_for(10) == 7
        assert resolution_for(13) == 9

    def test_monotonic(self):
        zooms = [z / 2 for z in range(0, 45)]
        levels = [resolution_for(z) for z in zooms]
        assert levels == sorted(levels)

    def test_clamped_to_privacy_floor(self):
        """Whatever the table says, never finer than the last grid level."""
        assert resolution_for(22) == MAX_RESOLUTION
        assert resolution_for(5, steps=((0, 0), (5, 20))) == MAX_RESOLUTION

    def test_below_first_step(self):
        assert resolution_for(-1) == 0


class TestCells:
    """Cell ids, parsing and geometry."""

    def test_cell_for_helsinki(self):
        assert cell_for(60.17, 24.94, 0) == "r0:15:20"

    def test_north_pole_in_last_row(self):
        assert cell_for(90.0, 0.0, 0) == "r0:17:18"

    def test_antimeridian_wraps(self):
        assert cell_for(0.0, 180.0, 0) == cell_for(0.0, -180.0, 0) == "r0:9:0"

    def test_center_and_boundary(self):
        assert center_of("r0:15:20") == (65.0, 25.0)
        assert boundary_of("r0:15:20") == [(60.0, 20.0), (60.0, 30.0), (70.0, 30.0), (70.0, 20.0)]

    @pytest.mark.parametrize("bad", ["bad", "x0:1:1", "r0:18:0", "r0:0:36", "r10:0:0", "r0:a:b"])
    def test_malformed_cell_rejected(self, bad):
        with pytest.raises(ValueError):
            parse_cell(bad)

    def test_resolution_out_of_range(self):
        with pytest.raises(ValueError):
            cell_size_deg(MAX_RESOLUTION + 1)

    @pytest.mark.parametrize("res", [0, 3, 6, 9])
    def test_partition(self, res):
        """Every point falls into exactly one cell, and inside its bounds."""
        rng = random.Random(res)
        for _ in range(300):
            lat, lng = rng.uniform(-89.9, 89.9), rng.uniform(-180, 179.99)
            cid = cell_for(lat, lng, res)
            (s, w), _, (n, e), _ = boundary_of(cid)
            assert s - 1e-9 <= lat <= n + 1e-9
            assert w - 1e-9 <= lng <= e + 1e-9
