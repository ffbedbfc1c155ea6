"""
Result Assembler.

Runs one batch of the positioning pipeline over every tag:

    fetch observations newer than the last computed result
      -> window (TimeWindowAggregator)
      -> de-duplicate / discard (ObservationValidator)
      -> RSSI ranges (RssiDistanceModel) x anchor ECEF positions
      -> solve (MultilaterationSolver)
      -> back to geodetic (CoordinateConverter)
      -> persist PositionEstimate, then its ContributingLinks

Error handling:
    - Retrieval failures (tags, anchors, latest timestamp, a tag's
      observations) abort the run: the RetrievalError propagates.
    - A failed estimate write skips that window only. Its links are never
      attempted.
    - A failed link write is logged; the estimate stays.
    - Nothing is retried.

Windows are independent. With max_workers > 1 the solves of a tag's windows
run in a thread pool; fetching and persisting stay on the calling thread and
in window order, so allocated identifiers increase with window order.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

import numpy as np

from atl_core.io.store import DataStore, RetrievalError, StoreError
from atl_core.localization.coordinate_converter import CoordinateConverter
from atl_core.localization.distance_model import RssiDistanceModel, create_reference_model
from atl_core.localization.multilateration_solver import (
    MultilaterationConfig,
    MultilaterationSolver,
    SolveResult,
)
from atl_core.localization.observation_validator import ObservationValidator
from atl_core.localization.time_window import TimeWindowAggregator
from atl_core.proto.observation import Observation, ObservationWindow
from atl_core.proto.position_estimate import ContributingLink, PositionEstimate
from atl_core.metrics import get_metrics

logger = logging.getLogger(__name__)

# Reference deployment elevation shared by all anchors (m above the ellipsoid)
REFERENCE_ELEVATION_M = 159.0


@dataclass
class AssemblerConfig:
    """
    Configuration for the result assembler.

    Attributes:
        reference_elevation_m: Elevation of every anchor; depth is measured
            from it (m)
        bucket_width_s: Window width (s), must be below tag_ping_interval_s
        tag_ping_interval_s: Tag reporting interval (s), None to skip the check
        min_anchors: Minimum distinct anchors for a solvable window
        max_workers: Solver threads per tag (1 = sequential)
        solver_config: MultilaterationSolver configuration
    """

    reference_elevation_m: float = REFERENCE_ELEVATION_M
    bucket_width_s: float = 4
    tag_ping_interval_s: Optional[float] = 15
    min_anchors: int = 3
    max_workers: int = 1
    solver_config: Optional[MultilaterationConfig] = None

    def __post_init__(self):
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1: {self.max_workers}")


@dataclass
class WindowSolution:
    """Solved window awaiting persistence."""

    window: ObservationWindow
    estimate: PositionEstimate
    solve_result: SolveResult


@dataclass
class RunSummary:
    """Outcome of one ResultAssembler.run()."""

    tags_processed: int = 0
    windows_built: int = 0
    windows_discarded: int = 0
    estimates_persisted: int = 0
    low_confidence: int = 0
    persistence_failures: int = 0
    links_persisted: int = 0
    estimates: List[PositionEstimate] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary (counts only) for logging."""
        return {
            'tags_processed': self.tags_processed,
            'windows_built': self.windows_built,
            'windows_discarded': self.windows_discarded,
            'estimates_persisted': self.estimates_persisted,
            'low_confidence': self.low_confidence,
            'persistence_failures': self.persistence_failures,
            'links_persisted': self.links_persisted,
        }


class ResultAssembler:
    """
    Per-tag, per-window orchestration of the positioning pipeline.

    Usage:
        assembler = ResultAssembler(store, AssemblerConfig())
        summary = assembler.run()
        print(summary.estimates_persisted)
    """

    def __init__(
        self,
        store: DataStore,
        config: Optional[AssemblerConfig] = None,
        distance_model: Optional[RssiDistanceModel] = None,
        converter: Optional[CoordinateConverter] = None,
    ):
        """
        Initialize assembler.

        Args:
            store: Data store collaborator
            config: Assembler configuration (uses defaults if None)
            distance_model: RSSI model (reference calibration if None)
            converter: Coordinate converter (WGS84 if None)
        """
        self.store = store
        self.config = config or AssemblerConfig()
        self.metrics = get_metrics()

        self.distance_model = distance_model or create_reference_model()
        self.converter = converter or CoordinateConverter()
        self.aggregator = TimeWindowAggregator(
            self.config.bucket_width_s, self.config.tag_ping_interval_s
        )
        self.validator = ObservationValidator(self.config.min_anchors)
        self.solver = MultilaterationSolver(self.config.solver_config)

    def run(self) -> RunSummary:
        """
        Process every tag once.

        Returns:
            RunSummary of the batch

        Raises:
            RetrievalError: If tags, anchors, the latest timestamp, or any
                tag's observations cannot be read
        """
        summary = RunSummary()

        try:
            tag_ids = self.store.list_tag_ids()
        except RetrievalError as e:
            logger.error("Retrieval of tag data failed: %s", e)
            raise

        try:
            anchors = self.store.list_anchor_nodes()
        except RetrievalError as e:
            logger.error("Retrieval of anchor data failed: %s", e)
            raise

        # since is a bucket key: readings later inside the newest computed
        # bucket are fetched again and may yield a second estimate for it
        try:
            since = self.store.latest_computed_timestamp()
        except RetrievalError as e:
            logger.error("Retrieval of latest computed timestamp failed: %s", e)
            raise

        anchor_positions = self.converter.anchor_positions(
            anchors, self.config.reference_elevation_m
        )
        logger.info(
            "Processing %d tags against %d anchors (since=%s)",
            len(tag_ids), len(anchor_positions), since,
        )

        for tag_id in tag_ids:
            self.process_tag(tag_id, anchor_positions, since, summary)

        logger.info("Run complete: %s", summary.to_dict())
        return summary

    def process_tag(
        self,
        tag_id: str,
        anchor_positions: Dict[str, np.ndarray],
        since: Optional[float],
        summary: Optional[RunSummary] = None,
    ) -> RunSummary:
        """
        Window, solve and persist one tag's outstanding observations.

        Args:
            tag_id: Tag to process
            anchor_positions: Anchor ID -> ECEF position
            since: Exclusive lower timestamp bound (None = everything)
            summary: Summary to accumulate into (new one if None)

        Returns:
            The accumulated summary
        """
        summary = summary if summary is not None else RunSummary()

        try:
            observations = self.store.fetch_observations(tag_id, since)
        except RetrievalError as e:
            logger.error("Retrieval of observation data failed for tag %s: %s", tag_id, e)
            raise

        self.metrics.increment('observations_in', len(observations))
        observations = self._drop_unknown_anchors(observations, anchor_positions)

        windows = self.aggregator.group(observations)
        summary.windows_built += len(windows)

        valid_windows = []
        for window in windows.values():
            validated = self.validator.validate(window)
            if validated is None:
                summary.windows_discarded += 1
            else:
                valid_windows.append(validated)

        for solution in self._solve_windows(valid_windows, anchor_positions):
            self._persist(solution, summary)

        summary.tags_processed += 1
        self.metrics.increment('tags_processed')
        return summary

    def solve_window(
        self,
        window: ObservationWindow,
        anchor_positions: Dict[str, np.ndarray],
    ) -> WindowSolution:
        """
        Solve one validated window. Pure: touches no store state.

        Args:
            window: De-duplicated window with >= min_anchors anchors
            anchor_positions: Anchor ID -> ECEF position

        Returns:
            WindowSolution with an estimate that has no identifier yet
        """
        points = np.array([anchor_positions[obs.anchor_id] for obs in window.observations])
        ranges = self.distance_model.estimate_ranges([obs.rssi for obs in window.observations])

        result = self.solver.solve(points, ranges)
        self.metrics.increment('windows_solved')
        lat, lon, height = self.converter.to_geodetic(*result.position)

        estimate = PositionEstimate(
            tag_id=window.tag_id,
            timestamp=window.bucket_timestamp,
            latitude=lat,
            longitude=lon,
            height_m=height,
            depth_m=self.config.reference_elevation_m - height,
            status=result.status,
            residual_rms=result.residual_rms,
            num_anchors_used=window.distinct_anchor_count,
            iterations=result.iterations,
        )
        return WindowSolution(window=window, estimate=estimate, solve_result=result)

    def _drop_unknown_anchors(
        self,
        observations: List[Observation],
        anchor_positions: Dict[str, np.ndarray],
    ) -> List[Observation]:
        known = [obs for obs in observations if obs.anchor_id in anchor_positions]
        unknown = len(observations) - len(known)
        if unknown:
            self.metrics.increment_drop('unknown_anchor', unknown)
            logger.warning("Dropped %d observations from unknown anchors", unknown)
        return known

    def _solve_windows(
        self,
        windows: List[ObservationWindow],
        anchor_positions: Dict[str, np.ndarray],
    ) -> List[WindowSolution]:
        if self.config.max_workers == 1 or len(windows) < 2:
            return [self.solve_window(w, anchor_positions) for w in windows]

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            # map() yields in submission order
            return list(pool.map(lambda w: self.solve_window(w, anchor_positions), windows))

    def _persist(self, solution: WindowSolution, summary: RunSummary):
        window = solution.window

        try:
            estimate = replace(
                solution.estimate,
                estimate_id=self.store.next_position_estimate_id(),
            )
            self.store.persist_position_estimate(estimate)
        except StoreError as e:
            summary.persistence_failures += 1
            self.metrics.increment_drop('persist_failed')
            logger.error(
                "Creation of position estimate failed for tag %s at %s: %s",
                window.tag_id, window.bucket_timestamp, e,
            )
            return

        summary.estimates_persisted += 1
        summary.estimates.append(estimate)
        self.metrics.increment('estimates_persisted')
        if estimate.is_low_confidence:
            summary.low_confidence += 1
            self.metrics.increment('low_confidence_fixes')

        try:
            links = [
                ContributingLink(
                    link_id=self.store.next_link_id(),
                    estimate_id=estimate.estimate_id,
                    observation_id=obs.observation_id,
                    timestamp=window.bucket_timestamp,
                )
                for obs in window.observations
            ]
            self.store.persist_contributing_links(links)
        except StoreError as e:
            self.metrics.increment_drop('link_persist_failed')
            logger.error(
                "Creation of contributing links failed for estimate %s: %s",
                estimate.estimate_id, e,
            )
            return

        summary.links_persisted += len(links)
        self.metrics.increment('links_persisted', len(links))


def create_default_assembler(
    store: DataStore,
    max_workers: int = 1,
) -> ResultAssembler:
    """
    Create an assembler with the reference deployment configuration.

    Args:
        store: Data store collaborator
        max_workers: Solver threads per tag

    Returns:
        Configured ResultAssembler
    """
    config = AssemblerConfig(
        reference_elevation_m=REFERENCE_ELEVATION_M,
        bucket_width_s=4,
        tag_ping_interval_s=15,
        min_anchors=3,
        max_workers=max_workers,
        solver_config=MultilaterationConfig(),
    )
    return ResultAssembler(store, config, distance_model=create_reference_model())
