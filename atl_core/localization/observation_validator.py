"""
Observation Window Validation.

Removes duplicate anchor readings within a window and discards windows that
cannot be solved. The first reading per anchor (earliest in the pre-sorted
input) is authoritative; later ones are treated as sensor noise.

Three distinct anchors is the minimum accepted. Four would fully constrain a
3D fix; three is kept for coverage.
"""

import logging
from typing import List, Optional

from atl_core.proto.observation import Observation, ObservationWindow
from atl_core.metrics import get_metrics

logger = logging.getLogger(__name__)

MIN_SOLVABLE_ANCHORS = 3


def deduplicate_anchors(observations: List[Observation]) -> List[Observation]:
    """Keep the first observation per anchor ID, preserving order."""
    seen = set()
    kept = []
    for obs in observations:
        if obs.anchor_id in seen:
            continue
        seen.add(obs.anchor_id)
        kept.append(obs)
    return kept


class ObservationValidator:
    """
    Decide whether a window is solvable.

    Usage:
        validator = ObservationValidator(min_anchors=3)
        window = validator.validate(window)
        if window is None:
            ...  # discarded
    """

    def __init__(self, min_anchors: int = MIN_SOLVABLE_ANCHORS):
        if min_anchors < MIN_SOLVABLE_ANCHORS:
            raise ValueError(
                f"min_anchors must be at least {MIN_SOLVABLE_ANCHORS}: {min_anchors}"
            )
        self.min_anchors = min_anchors
        self.metrics = get_metrics()

    def validate(self, window: ObservationWindow) -> Optional[ObservationWindow]:
        """
        De-duplicate a window and check it has enough distinct anchors.

        Args:
            window: Window as produced by TimeWindowAggregator

        Returns:
            A de-duplicated window, or None if the window must be discarded
        """
        kept = deduplicate_anchors(window.observations)

        duplicates = len(window) - len(kept)
        if duplicates:
            self.metrics.increment_drop('duplicate_anchor', duplicates)
            logger.debug(
                "Tag %s window %s: dropped %d duplicate anchor readings",
                window.tag_id, window.bucket_timestamp, duplicates,
            )

        if len(kept) < self.min_anchors:
            self.metrics.increment_drop('insufficient_anchors')
            logger.debug(
                "Tag %s window %s: %d distinct anchors, need %d",
                window.tag_id, window.bucket_timestamp, len(kept), self.min_anchors,
            )
            return None

        return ObservationWindow(
            tag_id=window.tag_id,
            bucket_timestamp=window.bucket_timestamp,
            observations=kept,
        )
