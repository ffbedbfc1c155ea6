"""
Coordinate Conversion: Geodetic (lat, lon, height) <-> ECEF Cartesian.

The solver reasons in earth-centred earth-fixed coordinates, where Euclidean
distance between two points is the straight-line distance between them.

Geodetic to ECEF is closed form. ECEF to geodetic uses Bowring's method,
which is accurate to well below a millimetre for terrestrial heights and
stays well-defined on the polar axis.
"""

import math
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Tuple

import numpy as np

from atl_core.proto.observation import AnchorNode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Ellipsoid:
    """
    Reference ellipsoid.

    Attributes:
        a: Semi-major axis (m)
        f: Flattening
    """

    a: float
    f: float

    @property
    def b(self) -> float:
        """Semi-minor axis (m)."""
        return self.a * (1 - self.f)

    @property
    def e2(self) -> float:
        """First eccentricity squared."""
        return 2 * self.f - self.f ** 2

    @property
    def ep2(self) -> float:
        """Second eccentricity squared."""
        return self.e2 / (1 - self.e2)


WGS84 = Ellipsoid(a=6378137.0, f=1.0 / 298.257223563)


class CoordinateConverter:
    """
    Bidirectional geodetic <-> ECEF conversion on a reference ellipsoid.

    Usage:
        converter = CoordinateConverter()
        x, y, z = converter.to_cartesian(22.29, 114.17, 159.0)
        lat, lon, h = converter.to_geodetic(x, y, z)
    """

    def __init__(self, ellipsoid: Ellipsoid = WGS84):
        self.ellipsoid = ellipsoid

    def to_cartesian(self, lat: float, lon: float, height: float) -> Tuple[float, float, float]:
        """
        Convert geodetic coordinates to ECEF.

        Args:
            lat: Latitude (degrees)
            lon: Longitude (degrees)
            height: Height above the ellipsoid (m)

        Returns:
            (x, y, z) in metres
        """
        el = self.ellipsoid
        phi = math.radians(lat)
        lam = math.radians(lon)
        sin_phi = math.sin(phi)
        cos_phi = math.cos(phi)

        # Prime vertical radius of curvature
        nu = el.a / math.sqrt(1 - el.e2 * sin_phi ** 2)

        x = (nu + height) * cos_phi * math.cos(lam)
        y = (nu + height) * cos_phi * math.sin(lam)
        z = (nu * (1 - el.e2) + height) * sin_phi
        return (x, y, z)

    def to_geodetic(self, x: float, y: float, z: float) -> Tuple[float, float, float]:
        """
        Convert ECEF coordinates to geodetic.

        Args:
            x, y, z: ECEF position (m)

        Returns:
            (lat, lon, height) with angles in degrees, height in metres

        Raises:
            ValueError: For the earth's centre, which has no geodetic position
        """
        el = self.ellipsoid
        p = math.hypot(x, y)
        r = math.hypot(p, z)
        if r == 0.0:
            raise ValueError("Earth centre has no geodetic position")

        # Parametric latitude
        beta = math.atan2(el.b * z * (1 + el.ep2 * el.b / r), el.a * p)
        sin_beta = math.sin(beta)
        cos_beta = math.cos(beta)

        phi = math.atan2(
            z + el.ep2 * el.b * sin_beta ** 3,
            p - el.e2 * el.a * cos_beta ** 3,
        )
        lam = math.atan2(y, x)

        sin_phi = math.sin(phi)
        cos_phi = math.cos(phi)
        nu = el.a / math.sqrt(1 - el.e2 * sin_phi ** 2)
        height = p * cos_phi + z * sin_phi - (el.a ** 2 / nu)

        return (math.degrees(phi), math.degrees(lam), height)

    def anchor_positions(
        self,
        anchors: Iterable[AnchorNode],
        height: float,
    ) -> Dict[str, np.ndarray]:
        """
        Build the anchor lookup table used by the solver.

        Args:
            anchors: Anchor nodes
            height: Shared reference elevation of all anchors (m)

        Returns:
            Dictionary of anchor ID -> ECEF position (np.ndarray, shape (3,))
        """
        table = {}
        for anchor in anchors:
            table[anchor.anchor_id] = np.array(
                self.to_cartesian(anchor.latitude, anchor.longitude, height)
            )
        logger.debug("Built ECEF table for %d anchors", len(table))
        return table
