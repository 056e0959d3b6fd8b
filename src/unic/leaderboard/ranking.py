"""Deterministic contest ranking.

Participants ranked by points DESC, then by earliest last activity ASC
(steady engagement beats a last-minute burst), then by participant id ASC
so the order is total even on exact ties.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

_FAR_FUTURE = datetime(2099, 12, 31, 23, 59, 59, tzinfo=timezone.utc)


def sort_key(entry: dict[str, Any]) -> tuple[int, datetime, int]:
    return (
        -entry.get("points", 0),
        entry.get("last_activity_at") or _FAR_FUTURE,
        entry.get("participant_id", 0),
    )


def rank_entries(entries: list[dict[str, Any]], offset: int = 0) -> list[dict[str, Any]]:
    """Sort entries and stamp a 1-indexed ``rank`` on each.

    Input dicts need ``participant_id``, ``points`` and ``last_activity_at``.
    """
    ranked = sorted(entries, key=sort_key)
    for i, entry in enumerate(ranked):
        entry["rank"] = offset + i + 1
    return ranked
