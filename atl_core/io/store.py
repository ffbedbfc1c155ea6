"""
Data Store Collaborator.

Defines the interface the positioning pipeline needs from storage, the error
taxonomy at that boundary, and an in-memory implementation used for tests and
simulation.

Identifier allocation belongs to the store: each store owns atomic sequences
for position estimate IDs and link IDs, seeded once from the maximum existing
identifier.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional, Set

from atl_core.proto.observation import AnchorNode, Observation
from atl_core.proto.position_estimate import PositionEstimate, ContributingLink
from atl_core.metrics import get_metrics

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for data store failures."""


class RetrievalError(StoreError):
    """Records could not be read. Fatal for a run."""


class PersistenceError(StoreError):
    """Records could not be written. Fatal for one window only."""


class IdSequence:
    """
    Strictly increasing identifier sequence, safe to share between threads.

    Usage:
        seq = IdSequence(start=41)
        seq.next()   # 42
    """

    def __init__(self, start: int = 0):
        self._lock = threading.Lock()
        self._last = start

    def next(self) -> int:
        """Allocate the next identifier."""
        with self._lock:
            self._last += 1
            return self._last


def seed_from_max(name: str, read_max: Callable[[], Optional[int]]) -> int:
    """
    Seed value for a sequence from the current maximum identifier.

    A failed lookup is not fatal: the sequence starts from 0. Identifiers may
    then collide with existing rows, which surfaces as persistence failures.

    Args:
        name: Sequence name (for logging)
        read_max: Callable returning the max existing ID or None

    Returns:
        Seed value (the next allocation returns seed + 1)
    """
    try:
        current = read_max()
    except StoreError as e:
        logger.warning(
            "Could not read max identifier for %s, seeding from 0 "
            "(identifiers may collide with existing rows): %s", name, e,
        )
        get_metrics().increment('id_seed_fallback')
        return 0
    return current or 0


class DataStore(ABC):
    """
    Interface between the pipeline and persistent storage.

    Read methods raise RetrievalError; write methods raise PersistenceError.
    """

    @abstractmethod
    def list_tag_ids(self) -> List[str]:
        """All tag identities."""

    @abstractmethod
    def list_anchor_nodes(self) -> List[AnchorNode]:
        """All anchor nodes."""

    @abstractmethod
    def latest_computed_timestamp(self) -> Optional[float]:
        """Timestamp of the newest persisted estimate across all tags, or None."""

    @abstractmethod
    def next_position_estimate_id(self) -> int:
        """Atomically allocate a position estimate identifier."""

    @abstractmethod
    def next_link_id(self) -> int:
        """Atomically allocate a contributing link identifier."""

    @abstractmethod
    def fetch_observations(self, tag_id: str, since: Optional[float]) -> List[Observation]:
        """Observations of a tag with timestamp > since, ascending by timestamp."""

    @abstractmethod
    def persist_position_estimate(self, estimate: PositionEstimate) -> None:
        """Write one estimate (estimate_id must be set)."""

    @abstractmethod
    def persist_contributing_links(self, links: List[ContributingLink]) -> None:
        """Write the links of one persisted estimate."""


class InMemoryDataStore(DataStore):
    """
    Dictionary-backed DataStore.

    Fault injection for tests:
        fail_list_tags / fail_list_anchors / fail_latest_timestamp: raise RetrievalError
        fail_fetch_tags: tag IDs whose fetch raises RetrievalError
        fail_persist_timestamps: window timestamps whose estimate persist fails
        fail_links: every link persist raises PersistenceError
        fail_max_id_lookup: seeding the sequences fails (degraded start)
    """

    def __init__(
        self,
        anchors: Iterable[AnchorNode] = (),
        observations: Iterable[Observation] = (),
        tag_ids: Optional[Iterable[str]] = None,
        estimates: Iterable[PositionEstimate] = (),
        links: Iterable[ContributingLink] = (),
        fail_max_id_lookup: bool = False,
    ):
        self.anchors: Dict[str, AnchorNode] = {a.anchor_id: a for a in anchors}
        self.observations: List[Observation] = list(observations)
        if tag_ids is None:
            tag_ids = sorted({obs.tag_id for obs in self.observations})
        self.tag_ids: List[str] = list(tag_ids)
        self.estimates: Dict[int, PositionEstimate] = {
            e.estimate_id: e for e in estimates
        }
        self.links: Dict[int, ContributingLink] = {l.link_id: l for l in links}

        self.fail_list_tags = False
        self.fail_list_anchors = False
        self.fail_latest_timestamp = False
        self.fail_fetch_tags: Set[str] = set()
        self.fail_persist_timestamps: Set[float] = set()
        self.fail_links = False
        self.fail_max_id_lookup = fail_max_id_lookup

        self._estimate_ids = IdSequence(
            seed_from_max('position_estimates', lambda: self._max_id(self.estimates))
        )
        self._link_ids = IdSequence(
            seed_from_max('contributing_links', lambda: self._max_id(self.links))
        )

    def _max_id(self, table: Dict[int, object]) -> Optional[int]:
        if self.fail_max_id_lookup:
            raise RetrievalError("max identifier lookup unavailable")
        return max(table) if table else None

    def list_tag_ids(self) -> List[str]:
        if self.fail_list_tags:
            raise RetrievalError("tag listing unavailable")
        return list(self.tag_ids)

    def list_anchor_nodes(self) -> List[AnchorNode]:
        if self.fail_list_anchors:
            raise RetrievalError("anchor listing unavailable")
        return list(self.anchors.values())

    def latest_computed_timestamp(self) -> Optional[float]:
        if self.fail_latest_timestamp:
            raise RetrievalError("estimate aggregate unavailable")
        if not self.estimates:
            return None
        return max(e.timestamp for e in self.estimates.values())

    def next_position_estimate_id(self) -> int:
        return self._estimate_ids.next()

    def next_link_id(self) -> int:
        return self._link_ids.next()

    def fetch_observations(self, tag_id: str, since: Optional[float]) -> List[Observation]:
        if tag_id in self.fail_fetch_tags:
            raise RetrievalError(f"observations unavailable for tag {tag_id}")
        selected = [
            obs for obs in self.observations
            if obs.tag_id == tag_id and (since is None or obs.timestamp > since)
        ]
        # Stable sort keeps recording order for equal timestamps
        return sorted(selected, key=lambda obs: obs.timestamp)

    def persist_position_estimate(self, estimate: PositionEstimate) -> None:
        if estimate.estimate_id is None:
            raise PersistenceError("estimate has no identifier")
        if estimate.timestamp in self.fail_persist_timestamps:
            raise PersistenceError(f"write rejected for window {estimate.timestamp}")
        if estimate.estimate_id in self.estimates:
            raise PersistenceError(f"duplicate estimate id {estimate.estimate_id}")
        self.estimates[estimate.estimate_id] = estimate

    def persist_contributing_links(self, links: List[ContributingLink]) -> None:
        if self.fail_links:
            raise PersistenceError("link write rejected")
        for link in links:
            if link.estimate_id not in self.estimates:
                raise PersistenceError(f"link {link.link_id} references unknown estimate")
            if link.link_id in self.links:
                raise PersistenceError(f"duplicate link id {link.link_id}")
        for link in links:
            self.links[link.link_id] = link

    def links_for(self, estimate_id: int) -> List[ContributingLink]:
        """Links of one estimate, in allocation order."""
        return sorted(
            (l for l in self.links.values() if l.estimate_id == estimate_id),
            key=lambda l: l.link_id,
        )

    def estimates_for(self, tag_id: str) -> List[PositionEstimate]:
        """Persisted estimates of one tag, ascending by timestamp."""
        return sorted(
            (e for e in self.estimates.values() if e.tag_id == tag_id),
            key=lambda e: (e.timestamp, e.estimate_id),
        )
