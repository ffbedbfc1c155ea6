"""
Position Estimate Output Schema.

Defines the records emitted by the pipeline: one PositionEstimate per
solvable window, and one ContributingLink per observation that went into it.
"""

from dataclasses import dataclass
from typing import Optional
from enum import IntEnum


class SolveStatus(IntEnum):
    """Outcome of the multilateration solve behind an estimate."""

    CONVERGED = 0       # Step or cost tolerance reached
    LOW_CONFIDENCE = 1  # Iteration budget exhausted, best iterate used
    DIVERGED = 2        # Non-finite iterate, best finite iterate used


@dataclass(frozen=True)
class PositionEstimate:
    """
    Tag position solved from one observation window.

    Attributes:
        tag_id: ID of the tag
        timestamp: Bucket key of the window (seconds)
        latitude: Solved geodetic latitude (degrees)
        longitude: Solved geodetic longitude (degrees)
        height_m: Solved ellipsoidal height (m)
        depth_m: Reference elevation minus solved height (m)
        status: Solver outcome
        residual_rms: RMS range residual at the solution (m)
        num_anchors_used: Number of distinct anchors in the window
        iterations: Solver iterations spent
        estimate_id: Store identifier (None until persisted)
    """

    tag_id: str
    timestamp: float
    latitude: float
    longitude: float
    height_m: float
    depth_m: float
    status: SolveStatus = SolveStatus.CONVERGED
    residual_rms: float = 0.0
    num_anchors_used: int = 0
    iterations: int = 0
    estimate_id: Optional[int] = None

    def __post_init__(self):
        """Validate position estimate."""
        if self.num_anchors_used < 0:
            raise ValueError(f"Num anchors cannot be negative: {self.num_anchors_used}")

        if self.residual_rms < 0:
            raise ValueError(f"Residual cannot be negative: {self.residual_rms}")

    @property
    def is_low_confidence(self) -> bool:
        """True when the solver did not converge cleanly."""
        return self.status != SolveStatus.CONVERGED

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'estimate_id': self.estimate_id,
            'tag_id': self.tag_id,
            'timestamp': self.timestamp,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'height_m': self.height_m,
            'depth_m': self.depth_m,
            'status': self.status.name,
            'residual_rms': self.residual_rms,
            'num_anchors_used': self.num_anchors_used,
            'iterations': self.iterations,
        }


@dataclass(frozen=True)
class ContributingLink:
    """
    Ties a persisted PositionEstimate to one observation that produced it.

    Attributes:
        link_id: Store identifier of the link
        estimate_id: Identifier of the persisted estimate
        observation_id: Identifier of the contributing observation
        timestamp: Bucket key shared with the estimate
    """

    link_id: int
    estimate_id: int
    observation_id: int
    timestamp: float

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'link_id': self.link_id,
            'estimate_id': self.estimate_id,
            'observation_id': self.observation_id,
            'timestamp': self.timestamp,
        }
