"""Pydantic models for leaderboard reads."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class LeaderboardEntry(BaseModel):
    rank: int
    participant_id: int
    points: int
    reactions_count: int
    comments_count: int
    replies_count: int
    boost_multiplier: float
    last_activity_at: datetime


class LeaderboardPage(BaseModel):
    contest_id: int
    entries: list[LeaderboardEntry]
    total_participants: int
    limit: int
    offset: int


class LeaderboardPosition(BaseModel):
    contest_id: int
    participant_id: int
    rank: int
    points: int
    total_participants: int
