"""
Metrics Module: Diagnostics, counters, histograms.

Usage:
    from atl_core.metrics import get_metrics

    metrics = get_metrics()
    metrics.increment('windows_built')
    metrics.increment_drop('insufficient_anchors')
    metrics.record_histogram('solver_iterations', 12)
"""

from .counters import MetricsCollector

# Global singleton for easy access
_global_metrics = None


def get_metrics() -> MetricsCollector:
    """
    Get the global metrics collector singleton.

    Returns:
        MetricsCollector instance
    """
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = MetricsCollector()
    return _global_metrics


def reset_metrics():
    """Reset global metrics (for testing)."""
    global _global_metrics
    _global_metrics = MetricsCollector()


__all__ = ['MetricsCollector', 'get_metrics', 'reset_metrics']
