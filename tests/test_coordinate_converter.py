"""
Unit tests for geodetic <-> ECEF conversion.

Tests cover:
- Known reference points (equator, prime meridian, poles)
- Round-trip accuracy across latitudes, longitudes and heights
- Metric distances in the Cartesian frame
- Anchor lookup table construction
"""

import math

import numpy as np
import pytest

from atl_core.localization import CoordinateConverter, Ellipsoid, WGS84
from atl_core.proto import AnchorNode

from tests.conftest import enu_to_geodetic


class TestEllipsoid:
    """Tests for Ellipsoid parameters."""

    def test_wgs84_semi_minor_axis(self):
        """Test WGS84 b matches the published value."""
        assert WGS84.b == pytest.approx(6356752.314245, abs=1e-6)

    def test_wgs84_eccentricity(self):
        """Test WGS84 first eccentricity squared."""
        assert WGS84.e2 == pytest.approx(6.69437999014e-3, rel=1e-10)

    def test_sphere(self):
        """Test zero flattening gives a sphere."""
        sphere = Ellipsoid(a=1000.0, f=0.0)

        assert sphere.b == 1000.0
        assert sphere.e2 == 0.0


class TestToCartesian:
    """Tests for geodetic -> ECEF."""

    def test_equator_prime_meridian(self, converter):
        """Test (0, 0, 0) maps to (a, 0, 0)."""
        x, y, z = converter.to_cartesian(0.0, 0.0, 0.0)

        assert x == pytest.approx(WGS84.a)
        assert y == pytest.approx(0.0, abs=1e-9)
        assert z == pytest.approx(0.0, abs=1e-9)

    def test_equator_90_east(self, converter):
        """Test (0, 90, h) lies on the +Y axis."""
        x, y, z = converter.to_cartesian(0.0, 90.0, 100.0)

        assert x == pytest.approx(0.0, abs=1e-6)
        assert y == pytest.approx(WGS84.a + 100.0)
        assert z == pytest.approx(0.0, abs=1e-9)

    def test_north_pole(self, converter):
        """Test the north pole lies at (0, 0, b)."""
        x, y, z = converter.to_cartesian(90.0, 0.0, 0.0)

        assert math.hypot(x, y) == pytest.approx(0.0, abs=1e-6)
        assert z == pytest.approx(WGS84.b)


class TestToGeodetic:
    """Tests for ECEF -> geodetic."""

    def test_polar_axis(self, converter):
        """Test points on the polar axis resolve to the poles."""
        lat, _, height = converter.to_geodetic(0.0, 0.0, WGS84.b + 50.0)
        assert lat == pytest.approx(90.0)
        assert height == pytest.approx(50.0, abs=1e-6)

        lat, _, height = converter.to_geodetic(0.0, 0.0, -WGS84.b)
        assert lat == pytest.approx(-90.0)
        assert height == pytest.approx(0.0, abs=1e-6)

    def test_earth_centre_rejected(self, converter):
        """Test the earth centre has no geodetic position."""
        with pytest.raises(ValueError):
            converter.to_geodetic(0.0, 0.0, 0.0)

    @pytest.mark.parametrize("lat, lon, height", [
        (22.29, 114.17, 159.0),
        (0.0, 0.0, 0.0),
        (-33.8688, 151.2093, -20.0),
        (51.4779, -0.0015, 45.0),
        (64.1466, -21.9426, 5000.0),
        (89.9, 45.0, 10.0),
        (-89.9, -120.0, 2500.0),
        (12.5, 179.9, 0.5),
        (-45.0, -179.9, 8848.0),
    ])
    def test_round_trip(self, converter, lat, lon, height):
        """Test to_geodetic(to_cartesian(p)) reproduces p."""
        lat2, lon2, height2 = converter.to_geodetic(*converter.to_cartesian(lat, lon, height))

        assert lat2 == pytest.approx(lat, abs=1e-6)
        assert lon2 == pytest.approx(lon, abs=1e-6)
        assert height2 == pytest.approx(height, abs=1e-3)


class TestMetricFrame:
    """Tests that the Cartesian frame preserves distances."""

    def test_vertical_offset(self, converter):
        """Test a pure height change is that many metres in ECEF."""
        a = np.array(converter.to_cartesian(22.29, 114.17, 159.0))
        b = np.array(converter.to_cartesian(22.29, 114.17, 59.0))

        assert np.linalg.norm(a - b) == pytest.approx(100.0, abs=1e-6)

    def test_local_offset(self, converter):
        """Test a 30-40 m local ENU offset is 50 m in ECEF."""
        base = converter.to_cartesian(22.29, 114.17, 159.0)
        offset = converter.to_cartesian(*enu_to_geodetic(converter, 30.0, 40.0, 0.0))

        assert np.linalg.norm(np.array(base) - np.array(offset)) == pytest.approx(50.0, abs=1e-6)


class TestAnchorPositions:
    """Tests for anchor lookup table construction."""

    def test_table_uses_reference_elevation(self, converter):
        """Test every anchor is placed at the shared height."""
        anchors = [
            AnchorNode("N0", 22.29, 114.17),
            AnchorNode("N1", 22.2901, 114.1702),
        ]

        table = converter.anchor_positions(anchors, 159.0)

        assert set(table) == {"N0", "N1"}
        for anchor in anchors:
            _, _, height = converter.to_geodetic(*table[anchor.anchor_id])
            assert height == pytest.approx(159.0, abs=1e-6)
            assert table[anchor.anchor_id].shape == (3,)

    def test_empty(self, converter):
        """Test no anchors gives an empty table."""
        assert converter.anchor_positions([], 159.0) == {}
