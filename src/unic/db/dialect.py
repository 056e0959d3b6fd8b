"""Dialect-specific INSERT ... ON CONFLICT constructs."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def upsert(db: AsyncSession, model: Any) -> Any:
    """Return an ``insert()`` for *model* supporting ``on_conflict_*`` on the session's backend."""
    bind = db.get_bind()
    if bind.dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)
