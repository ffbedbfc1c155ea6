"""
Unit tests for observation window validation.

Tests cover:
- Duplicate anchor removal (first occurrence wins)
- Discarding windows with too few distinct anchors
- Drop metrics
"""

import pytest

from atl_core.localization import ObservationValidator, deduplicate_anchors
from atl_core.metrics import get_metrics
from atl_core.proto import Observation, ObservationWindow


def make_window(readings, tag_id="T1", bucket=100):
    """Window from (observation_id, anchor_id) pairs."""
    window = ObservationWindow(tag_id=tag_id, bucket_timestamp=bucket)
    for observation_id, anchor_id in readings:
        window.add(Observation(observation_id, tag_id, anchor_id, bucket, -80.0))
    return window


class TestDeduplicateAnchors:
    """Tests for deduplicate_anchors."""

    def test_keeps_first_occurrence(self):
        """Test the earliest reading per anchor survives."""
        window = make_window([(1, "N0"), (2, "N1"), (3, "N0"), (4, "N2"), (5, "N1")])

        kept = deduplicate_anchors(window.observations)

        assert [o.observation_id for o in kept] == [1, 2, 4]

    def test_no_duplicates_unchanged(self):
        """Test a clean window passes through intact."""
        window = make_window([(1, "N0"), (2, "N1"), (3, "N2")])

        assert deduplicate_anchors(window.observations) == window.observations


class TestObservationValidator:
    """Tests for ObservationValidator.validate."""

    def test_three_distinct_anchors_accepted(self):
        """Test the minimum solvable window passes."""
        validator = ObservationValidator()
        window = make_window([(1, "N0"), (2, "N1"), (3, "N2")])

        result = validator.validate(window)

        assert result is not None
        assert len(result) == 3

    def test_duplicate_reduces_count_by_duplicate_count(self):
        """Test surviving count drops by exactly the number of duplicates."""
        validator = ObservationValidator()
        window = make_window([(1, "N0"), (2, "N0"), (3, "N1"), (4, "N2"), (5, "N0")])

        result = validator.validate(window)

        assert len(result) == len(window) - 2
        assert [o.observation_id for o in result.observations] == [1, 3, 4]
        assert get_metrics().get_drop_count('duplicate_anchor') == 2

    def test_two_distinct_anchors_discarded(self):
        """Test fewer than 3 distinct anchors discards the window."""
        validator = ObservationValidator()
        window = make_window([(1, "N0"), (2, "N1"), (3, "N1"), (4, "N0")])

        assert validator.validate(window) is None
        assert get_metrics().get_drop_count('insufficient_anchors') == 1

    def test_duplicate_plus_two_distinct_survives(self):
        """Test one anchor reported twice plus two others reduces to 3."""
        validator = ObservationValidator()
        window = make_window([(1, "N0"), (2, "N0"), (3, "N1"), (4, "N2")])

        result = validator.validate(window)

        assert result is not None
        assert result.distinct_anchor_count == 3
        assert result.anchor_ids == ["N0", "N1", "N2"]

    def test_input_window_not_mutated(self):
        """Test validation returns a new window."""
        validator = ObservationValidator()
        window = make_window([(1, "N0"), (2, "N0"), (3, "N1"), (4, "N2")])

        result = validator.validate(window)

        assert len(window) == 4
        assert result.tag_id == window.tag_id
        assert result.bucket_timestamp == window.bucket_timestamp

    def test_higher_minimum(self):
        """Test a stricter minimum of 4 anchors."""
        validator = ObservationValidator(min_anchors=4)
        window = make_window([(1, "N0"), (2, "N1"), (3, "N2")])

        assert validator.validate(window) is None

    def test_minimum_below_three_rejected(self):
        """Test configuring fewer than 3 anchors raises."""
        with pytest.raises(ValueError):
            ObservationValidator(min_anchors=2)
