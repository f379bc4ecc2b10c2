"""Dialect-aware INSERT constructs for ON CONFLICT upserts.

Production runs on PostgreSQL; the test suite runs on SQLite. Both dialects
support ``ON CONFLICT ... DO UPDATE ... WHERE`` and ``RETURNING`` with the same
API, so services build their upserts through :func:`insert_for`.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def insert_for(db: AsyncSession, entity: Any) -> Any:  # noqa: ANN401
    """Return an upsert-capable INSERT for the session's dialect."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(entity)
    if dialect == "sqlite":
        return sqlite_insert(entity)
    msg = f"Upserts are not supported on dialect {dialect!r}"
    raise RuntimeError(msg)
