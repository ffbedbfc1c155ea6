"""
Time Window Aggregation.

Groups a tag's observations into fixed-width time buckets. Each bucket is one
positioning opportunity: near-simultaneous receptions of a single tag ping by
several anchors.

Configuration contract:
    bucket_width must be smaller than the tag ping interval, otherwise two
    distinct pings can merge into one window. It must also be large enough to
    absorb anchor-to-anchor clock and arrival skew. The reference deployment
    pings every 15 s and uses 4 s buckets.
"""

import logging
from typing import Dict, Iterable, Optional

from atl_core.proto.observation import Observation, ObservationWindow
from atl_core.metrics import get_metrics

logger = logging.getLogger(__name__)

DEFAULT_BUCKET_WIDTH_S = 4
DEFAULT_TAG_PING_INTERVAL_S = 15


def bucket_timestamp(timestamp: float, bucket_width: float) -> float:
    """
    Bucket key of a timestamp: the largest multiple of bucket_width <= timestamp.

    Idempotent: bucket_timestamp(bucket_timestamp(t, w), w) == bucket_timestamp(t, w).
    """
    # Python's % takes the sign of the divisor, so this floors for negative t too
    return timestamp - (timestamp % bucket_width)


class TimeWindowAggregator:
    """
    Group observations of one tag into ObservationWindows.

    Usage:
        aggregator = TimeWindowAggregator(bucket_width=4)
        windows = aggregator.group(observations)   # {bucket: ObservationWindow}
    """

    def __init__(
        self,
        bucket_width: float = DEFAULT_BUCKET_WIDTH_S,
        tag_ping_interval: Optional[float] = DEFAULT_TAG_PING_INTERVAL_S,
    ):
        """
        Initialize aggregator.

        Args:
            bucket_width: Width of each time bucket (s)
            tag_ping_interval: Known tag reporting interval (s), or None to
                skip the width/interval check

        Raises:
            ValueError: If the configuration contract is violated
        """
        if bucket_width <= 0:
            raise ValueError(f"Bucket width must be positive: {bucket_width}")

        if tag_ping_interval is not None and bucket_width >= tag_ping_interval:
            raise ValueError(
                f"Bucket width {bucket_width}s must be smaller than the tag "
                f"ping interval {tag_ping_interval}s"
            )

        self.bucket_width = bucket_width
        self.tag_ping_interval = tag_ping_interval
        self.metrics = get_metrics()

    def bucket(self, timestamp: float) -> float:
        """Bucket key for a timestamp under this aggregator's width."""
        return bucket_timestamp(timestamp, self.bucket_width)

    def group(self, observations: Iterable[Observation]) -> Dict[float, ObservationWindow]:
        """
        Group observations into windows keyed by bucket timestamp.

        Args:
            observations: Observations of a single tag, ascending by timestamp

        Returns:
            Windows in first-seen bucket order; observations keep input order

        Raises:
            ValueError: If observations of more than one tag are mixed
        """
        windows: Dict[float, ObservationWindow] = {}
        tag_id = None

        for obs in observations:
            if tag_id is None:
                tag_id = obs.tag_id
            elif obs.tag_id != tag_id:
                raise ValueError(f"Mixed tag IDs in one batch: {tag_id}, {obs.tag_id}")

            key = self.bucket(obs.timestamp)
            window = windows.get(key)
            if window is None:
                window = ObservationWindow(tag_id=tag_id, bucket_timestamp=key)
                windows[key] = window
            window.add(obs)

        self.metrics.increment('windows_built', len(windows))
        if windows:
            logger.debug("Tag %s: %d windows", tag_id, len(windows))
        return windows
