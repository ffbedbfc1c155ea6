"""
Protocol Module: Record schemas for pipeline inputs and outputs.
"""

from .observation import (
    AnchorNode,
    Observation,
    ObservationWindow,
)
from .position_estimate import (
    PositionEstimate,
    ContributingLink,
    SolveStatus,
)

__all__ = [
    # Inputs
    'AnchorNode',
    'Observation',
    'ObservationWindow',
    # Outputs
    'PositionEstimate',
    'ContributingLink',
    'SolveStatus',
]
