"""
Tests for the batch runner entry point.
"""

import main
from atl_core.io import SQLiteDataStore
from atl_core.proto import Observation

from tests.conftest import exact_rssi


def test_empty_database_runs(tmp_path):
    """Test a run over an empty database succeeds with nothing to do."""
    assert main.main(["--db", str(tmp_path / "atl.db")]) == 0


def test_run_persists_estimate(tmp_path, square_anchors, square_center, distance_model, converter, capsys):
    """Test the runner solves the square scenario and prints metrics."""
    db_path = str(tmp_path / "atl.db")
    with SQLiteDataStore(db_path) as store:
        store.add_anchor_nodes(square_anchors)
        store.add_observations([
            Observation(
                i + 1, "T1", anchor.anchor_id, 100.0,
                exact_rssi(distance_model, converter, anchor, square_center),
            )
            for i, anchor in enumerate(square_anchors)
        ])

    assert main.main(["--db", db_path, "--workers", "2", "--metrics"]) == 0

    with SQLiteDataStore(db_path) as store:
        assert store.count_estimates() == 1
        assert len(store.links_for(1)) == 4
    assert 'estimates_persisted' in capsys.readouterr().out


def test_unopenable_database(tmp_path):
    """Test a database that cannot be opened exits non-zero."""
    assert main.main(["--db", str(tmp_path / "missing" / "atl.db")]) == 1
