"""
Tests for deduplication and cost tracking
"""

import pytest

from tracking import CostTracker, Deduplicator


class TestDeduplicator:

    def test_accepts_each_id_once_in_first_seen_order(self):
        dedup = Deduplicator()
        ids = ['a', 'b', 'a', 'c', 'b', 'a', 'd']
        accepted = [pid for pid in ids if dedup.accept(pid)]
        assert accepted == ['a', 'b', 'c', 'd']
        assert dedup.count == 4

    def test_missing_ids_never_accepted(self):
        dedup = Deduplicator()
        assert dedup.accept(None) is False
        assert dedup.accept('') is False
        assert dedup.count == 0

    def test_reset_starts_a_new_scope(self):
        """Per-brand scope: the same place may be accepted once per brand."""
        dedup = Deduplicator()
        assert dedup.accept('shared') is True
        assert dedup.accept('shared') is False
        dedup.reset()
        assert dedup.accept('shared') is True


class TestCostTracker:

    def test_accumulates_monotonically(self):
        tracker = CostTracker(unit_cost=0.017)
        costs = [tracker.add_calls(n) for n in (1, 0, 3, 2)]
        assert costs == sorted(costs)
        assert tracker.total_calls == 6

    def test_thousand_calls_cost(self):
        tracker = CostTracker(unit_cost=0.017)
        assert tracker.add_calls(1000) == pytest.approx(17.0)
        assert tracker.exceeds(20000) is False

    def test_ceiling_crossing(self):
        tracker = CostTracker(unit_cost=0.017, ceiling=20000)
        tracker.add_calls(1_176_470)
        assert tracker.exceeds() is False
        tracker.add_calls(1)
        assert tracker.total_calls == 1_176_471
        assert tracker.exceeds() is True

    def test_exceeds_flips_exactly_at_crossing(self):
        tracker = CostTracker(unit_cost=1.0)
        flips = []
        for _ in range(10):
            tracker.add_calls(1)
            flips.append(tracker.exceeds(5))
        assert flips == [False] * 5 + [True] * 5

    def test_no_ceiling_never_exceeds(self):
        tracker = CostTracker(unit_cost=1.0)
        tracker.add_calls(10 ** 6)
        assert tracker.exceeds() is False

    def test_negative_calls_rejected(self):
        with pytest.raises(ValueError):
            CostTracker().add_calls(-1)

    def test_summary(self):
        tracker = CostTracker(unit_cost=0.5)
        tracker.add_calls(4)
        assert tracker.summary() == "API Usage: 4 calls. Est. cost: 2.00"
