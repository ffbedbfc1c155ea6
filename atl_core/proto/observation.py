"""
Anchor and Observation Record Schemas.

Defines the read-only inputs of the positioning pipeline: fixed anchor nodes
and the RSSI "ping" observations they record for nearby tags, plus the
transient window grouping built from them.
"""

from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True)
class AnchorNode:
    """
    Fixed anchor with a known geodetic position.

    Attributes:
        anchor_id: ID of the anchor node
        latitude: Geodetic latitude (degrees)
        longitude: Geodetic longitude (degrees)

    Notes:
        - Anchor elevation is not stored per node. All anchors of a
          deployment share one reference elevation (see AssemblerConfig).
    """

    anchor_id: str
    latitude: float
    longitude: float

    def __post_init__(self):
        """Validate anchor coordinates."""
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude out of range: {self.latitude}")

        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude out of range: {self.longitude}")

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'anchor_id': self.anchor_id,
            'latitude': self.latitude,
            'longitude': self.longitude,
        }


@dataclass(frozen=True)
class Observation:
    """
    One RSSI sample of a tag ping recorded by an anchor.

    Attributes:
        observation_id: ID of the observation record
        tag_id: ID of the transmitting tag
        anchor_id: ID of the receiving anchor
        timestamp: Reception time (seconds, monotonic per tag)
        rssi: Received signal strength (dBm, negative)
    """

    observation_id: int
    tag_id: str
    anchor_id: str
    timestamp: float
    rssi: float

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'observation_id': self.observation_id,
            'tag_id': self.tag_id,
            'anchor_id': self.anchor_id,
            'timestamp': self.timestamp,
            'rssi': self.rssi,
        }


@dataclass
class ObservationWindow:
    """
    Observations of one tag that fall into the same time bucket.

    A window is one positioning opportunity. It lives only for the duration
    of a run and is never persisted.

    Attributes:
        tag_id: Tag the observations belong to
        bucket_timestamp: Bucket key (start of the bucket, seconds)
        observations: Observations in input order
    """

    tag_id: str
    bucket_timestamp: float
    observations: List[Observation] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.observations)

    def add(self, observation: Observation):
        """Append an observation, keeping input order."""
        if observation.tag_id != self.tag_id:
            raise ValueError(
                f"Observation for tag {observation.tag_id} added to window of tag {self.tag_id}"
            )
        self.observations.append(observation)

    @property
    def anchor_ids(self) -> List[str]:
        """Anchor IDs in observation order (may contain duplicates)."""
        return [obs.anchor_id for obs in self.observations]

    @property
    def distinct_anchor_count(self) -> int:
        """Number of distinct anchors that reported in this window."""
        return len(set(self.anchor_ids))
