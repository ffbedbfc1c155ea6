"""
Localization Module: RSSI ranging, coordinate transforms, windowing, solving.

Key classes:
- RssiDistanceModel: RSSI -> range (inverse log attenuation curve)
- CoordinateConverter: Geodetic <-> ECEF transforms
- TimeWindowAggregator: Bucket a tag's observations by time
- ObservationValidator: De-duplicate anchors, reject unsolvable windows
- MultilaterationSolver: Levenberg-Marquardt multilateration
"""

from .distance_model import (
    RssiDistanceModel,
    create_reference_model,
)
from .coordinate_converter import (
    CoordinateConverter,
    Ellipsoid,
    WGS84,
)
from .time_window import (
    TimeWindowAggregator,
    bucket_timestamp,
)
from .observation_validator import (
    ObservationValidator,
    deduplicate_anchors,
)
from .multilateration_solver import (
    MultilaterationSolver,
    MultilaterationConfig,
    SolveResult,
    centroid,
)

__all__ = [
    # Ranging
    'RssiDistanceModel',
    'create_reference_model',
    # Coordinate conversion
    'CoordinateConverter',
    'Ellipsoid',
    'WGS84',
    # Windowing and validation
    'TimeWindowAggregator',
    'bucket_timestamp',
    'ObservationValidator',
    'deduplicate_anchors',
    # Solver
    'MultilaterationSolver',
    'MultilaterationConfig',
    'SolveResult',
    'centroid',
]
