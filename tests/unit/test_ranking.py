"""Unit tests for deterministic contest ranking."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from unic.leaderboard.ranking import rank_entries

BASE = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _entry(pid: int, points: int, minutes: int) -> dict:
    return {"participant_id": pid, "points": points, "last_activity_at": BASE + timedelta(minutes=minutes)}


class TestRankEntries:
    """Test ordering and rank stamping."""

    def test_points_descending(self):
        """Higher points rank first."""
        ranked = rank_entries([_entry(1, 4, 0), _entry(2, 8, 0), _entry(3, 6, 0)])
        assert [e["participant_id"] for e in ranked] == [2, 3, 1]
        assert [e["rank"] for e in ranked] == [1, 2, 3]

    def test_tie_broken_by_earlier_activity(self):
        """On equal points, the participant who got there first ranks higher."""
        ranked = rank_entries([_entry(1, 10, 30), _entry(2, 10, 5)])
        assert [e["participant_id"] for e in ranked] == [2, 1]

    def test_exact_tie_broken_by_participant_id(self):
        """Identical points and timestamps still produce a total order."""
        ranked = rank_entries([_entry(9, 5, 0), _entry(3, 5, 0)])
        assert [e["participant_id"] for e in ranked] == [3, 9]

    def test_offset_shifts_ranks(self):
        """Ranks on a later page continue from the offset."""
        ranked = rank_entries([_entry(1, 3, 0), _entry(2, 2, 0)], offset=10)
        assert [e["rank"] for e in ranked] == [11, 12]

    def test_empty(self):
        assert rank_entries([]) == []

