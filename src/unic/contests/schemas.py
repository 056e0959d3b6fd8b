"""Pydantic models for contest state stored as JSON and returned to callers."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class WinnerEntry(BaseModel):
    telegram_id: int
    points: int
    position: int
    prize: dict[str, Any] | None = None
    sent: bool = False
    second_chance: bool = False


class ContestSummary(BaseModel):
    id: int
    channel_id: int
    title: str | None
    status: str
    activity_type: str
    duration: str
    winners_count: int
    starts_at: datetime | None
    ends_at: datetime | None
    participants_count: int
    total_reactions: int
    total_comments: int
    winners: list[WinnerEntry] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class DistributionStats(BaseModel):
    total: int = 0
    pending: int = 0
    processing: int = 0
    sent: int = 0
    failed: int = 0


class TickReport(BaseModel):
    """Outcome of one scheduler tick."""

    completed: list[int] = Field(default_factory=list)
    recovered: list[int] = Field(default_factory=list)
    second_chance_drawn: list[int] = Field(default_factory=list)
    failed: list[int] = Field(default_factory=list)
