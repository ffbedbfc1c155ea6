"""
Pipeline counters, drop reasons and solver histograms.

Counters track volume through a run (observations in, windows built and
solved, estimates and links persisted). Every observation or window that does
not reach the store is counted under one reason code. The solver records its
iteration count and RMS range residual per window.
"""

import logging
import threading
from collections import Counter, deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional

import numpy as np

logger = logging.getLogger(__name__)

PIPELINE_COUNTERS = (
    'tags_processed',
    'observations_in',
    'windows_built',
    'windows_solved',
    'estimates_persisted',
    'links_persisted',
    'low_confidence_fixes',
    'id_seed_fallback',
)

# Samples kept per histogram; older samples fall off
HISTOGRAM_WINDOW = 5000


@dataclass
class CounterSnapshot:
    """Copy of the collector state."""

    counters: Dict[str, int]
    drop_reasons: Dict[str, int]
    histograms: Dict[str, Dict[str, float]]

    def total_dropped(self) -> int:
        return sum(self.drop_reasons.values())


class MetricsCollector:
    """
    Thread-safe pipeline metrics.

    Usage:
        metrics = MetricsCollector()
        metrics.increment('observations_in', 12)
        metrics.increment_drop('insufficient_anchors')
        metrics.record_histogram('solver_iterations', 7)
    """

    DROP_REASONS = {
        'insufficient_anchors': 'Fewer than the minimum distinct anchors in window',
        'duplicate_anchor': 'Repeated anchor reading within a window',
        'unknown_anchor': 'Observation from an anchor missing in the store',
        'persist_failed': 'Position estimate could not be persisted',
        'link_persist_failed': 'Contributing links could not be persisted',
    }

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self):
        """Zero every counter and drop every histogram sample."""
        with self._lock:
            self._counters = Counter({name: 0 for name in PIPELINE_COUNTERS})
            self._drops = Counter({reason: 0 for reason in self.DROP_REASONS})
            self._histograms: Dict[str, Deque[float]] = {}

    def increment(self, counter_name: str, value: int = 1):
        with self._lock:
            self._counters[counter_name] += value

    def increment_drop(self, reason: str, value: int = 1):
        """Count dropped items under a reason code (unknown codes are logged)."""
        if reason not in self.DROP_REASONS:
            logger.warning("Unknown drop reason '%s'", reason)
        with self._lock:
            self._drops[reason] += value
            self._counters['items_dropped'] += value

    def get_counter(self, counter_name: str) -> int:
        with self._lock:
            return self._counters[counter_name]

    def get_drop_count(self, reason: str) -> int:
        with self._lock:
            return self._drops[reason]

    def record_histogram(self, histogram_name: str, value: float):
        with self._lock:
            samples = self._histograms.get(histogram_name)
            if samples is None:
                samples = self._histograms[histogram_name] = deque(maxlen=HISTOGRAM_WINDOW)
            samples.append(float(value))

    def get_histogram_stats(self, histogram_name: str) -> Optional[Dict[str, float]]:
        """
        Summary statistics of a histogram.

        Returns:
            Dict with count, min, max, mean, median, p95; None if no samples
        """
        with self._lock:
            samples = self._histograms.get(histogram_name)
            if not samples:
                return None
            values = np.array(samples)

        return {
            'count': int(values.size),
            'min': float(values.min()),
            'max': float(values.max()),
            'mean': float(values.mean()),
            'median': float(np.median(values)),
            'p95': float(np.percentile(values, 95)),
        }

    def snapshot(self) -> CounterSnapshot:
        with self._lock:
            counters = dict(self._counters)
            drops = dict(self._drops)
            names = list(self._histograms)

        return CounterSnapshot(
            counters=counters,
            drop_reasons=drops,
            histograms={name: self.get_histogram_stats(name) for name in names},
        )

    def print_summary(self):
        """Print counters, non-zero drop reasons and histogram summaries."""
        snapshot = self.snapshot()

        print("\n" + "=" * 60)
        print("  PIPELINE METRICS")
        print("=" * 60)
        for name, value in sorted(snapshot.counters.items()):
            print(f"  {name:28s} {value:8d}")

        dropped = {r: n for r, n in snapshot.drop_reasons.items() if n}
        if dropped:
            print("\n  dropped by reason:")
            for reason, count in sorted(dropped.items()):
                print(f"    {reason:26s} {count:8d}")

        for name, stats in sorted(snapshot.histograms.items()):
            print(f"\n  {name}: n={stats['count']} mean={stats['mean']:.3f} "
                  f"p95={stats['p95']:.3f} max={stats['max']:.3f}")
        print("=" * 60 + "\n")
