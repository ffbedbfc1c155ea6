"""
Anchor Tag Locator (ATL) Core Package.

Batch positioning of RSSI-reporting tags from fixed anchor observations.

Package structure:
- proto: Record schemas (anchors, observations, position estimates, links)
- localization: RSSI distance model, coordinate transforms, windowing,
  validation, multilateration
- domain: Result assembly (per-tag, per-window orchestration)
- io: Data store collaborators (in-memory, SQLite)
- metrics: Diagnostics, counters, histograms
"""

__version__ = "0.1.0"
__author__ = "ATL Team"
