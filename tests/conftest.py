"""
Pytest configuration and shared fixtures for Anchor Tag Locator tests.

This module provides reusable fixtures for anchor layouts, synthetic
geometry (local ENU offsets placed on the WGS84 ellipsoid) and populated
in-memory stores.
"""

import sys
import math
from pathlib import Path
from typing import Dict, List, Tuple

import numpy as np
import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from atl_core.io import InMemoryDataStore
from atl_core.localization import CoordinateConverter, RssiDistanceModel, create_reference_model
from atl_core.metrics import reset_metrics
from atl_core.proto import AnchorNode, Observation

BASE_LAT = 22.2900
BASE_LON = 114.1700
REFERENCE_ELEVATION_M = 159.0


# =============================================================================
# Metrics isolation
# =============================================================================


@pytest.fixture(autouse=True)
def fresh_metrics():
    """Give every test its own global metrics collector."""
    reset_metrics()
    yield


# =============================================================================
# Geometry Helpers
# =============================================================================


def enu_to_geodetic(
    converter: CoordinateConverter,
    e: float,
    n: float,
    u: float,
    base_lat: float = BASE_LAT,
    base_lon: float = BASE_LON,
    base_height: float = REFERENCE_ELEVATION_M,
) -> Tuple[float, float, float]:
    """
    Place a local ENU offset (m) from a base point on the ellipsoid.

    Returns:
        (lat, lon, height) of the offset point
    """
    phi = math.radians(base_lat)
    lam = math.radians(base_lon)
    east = np.array([-math.sin(lam), math.cos(lam), 0.0])
    north = np.array([
        -math.sin(phi) * math.cos(lam),
        -math.sin(phi) * math.sin(lam),
        math.cos(phi),
    ])
    up = np.array([
        math.cos(phi) * math.cos(lam),
        math.cos(phi) * math.sin(lam),
        math.sin(phi),
    ])
    origin = np.array(converter.to_cartesian(base_lat, base_lon, base_height))
    point = origin + e * east + n * north + u * up
    return converter.to_geodetic(*point)


def ecef_distance(
    converter: CoordinateConverter,
    p1: Tuple[float, float, float],
    p2: Tuple[float, float, float],
) -> float:
    """Straight-line distance (m) between two geodetic points."""
    a = np.array(converter.to_cartesian(*p1))
    b = np.array(converter.to_cartesian(*p2))
    return float(np.linalg.norm(a - b))


def make_anchors(
    converter: CoordinateConverter,
    layout: Dict[str, Tuple[float, float]],
) -> List[AnchorNode]:
    """AnchorNodes at ENU (e, n) offsets from the base point."""
    anchors = []
    for anchor_id, (e, n) in layout.items():
        lat, lon, _ = enu_to_geodetic(converter, e, n, 0.0)
        anchors.append(AnchorNode(anchor_id=anchor_id, latitude=lat, longitude=lon))
    return anchors


def exact_rssi(
    model: RssiDistanceModel,
    converter: CoordinateConverter,
    anchor: AnchorNode,
    tag_position: Tuple[float, float, float],
) -> float:
    """RSSI the model maps back to the exact anchor-tag distance."""
    anchor_position = (anchor.latitude, anchor.longitude, REFERENCE_ELEVATION_M)
    return model.expected_rssi(ecef_distance(converter, anchor_position, tag_position))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def converter() -> CoordinateConverter:
    """WGS84 coordinate converter."""
    return CoordinateConverter()


@pytest.fixture
def distance_model() -> RssiDistanceModel:
    """Reference deployment distance model."""
    return create_reference_model()


@pytest.fixture
def square_layout() -> Dict[str, Tuple[float, float]]:
    """
    Four anchors on the corners of a 100 m x 100 m square (ENU metres).
    """
    return {
        "N0": (0.0, 0.0),
        "N1": (100.0, 0.0),
        "N2": (100.0, 100.0),
        "N3": (0.0, 100.0),
    }


@pytest.fixture
def square_anchors(converter, square_layout) -> List[AnchorNode]:
    """AnchorNodes of the square layout."""
    return make_anchors(converter, square_layout)


@pytest.fixture
def square_center(converter) -> Tuple[float, float, float]:
    """Geodetic position of the square's centre at the reference elevation."""
    lat, lon, _ = enu_to_geodetic(converter, 50.0, 50.0, 0.0)
    return (lat, lon, REFERENCE_ELEVATION_M)


@pytest.fixture
def square_center_store(square_anchors, square_center, distance_model, converter) -> InMemoryDataStore:
    """
    Store with tag T1 pinging once (t=100..101) from the square's centre,
    heard by all four anchors with noise-free RSSI.
    """
    observations = []
    for i, anchor in enumerate(square_anchors):
        observations.append(Observation(
            observation_id=i + 1,
            tag_id="T1",
            anchor_id=anchor.anchor_id,
            timestamp=100 + i // 2,
            rssi=exact_rssi(distance_model, converter, anchor, square_center),
        ))
    return InMemoryDataStore(anchors=square_anchors, observations=observations)
