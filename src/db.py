"""Async SQLite connection helper shared by the schedule and execution stores.

Connections are opened per operation. The database runs in WAL mode with a
busy timeout, so concurrent writers wait for the write lock instead of
failing immediately.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite

from src.config import settings

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path


async def get_connection(
    path: Path | None = None,
    schema: Iterable[str] = (),
) -> aiosqlite.Connection:
    """Open an aiosqlite connection to *path* (default ``settings.database_path``).

    Statements in *schema* are executed and committed before the connection
    is returned; pass them on first use only.
    """
    db_path = path or settings.database_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(
        str(db_path),
        timeout=settings.database_busy_timeout_ms / 1000,
    )
    statements = list(schema)
    if statements:
        await db.execute("PRAGMA journal_mode=WAL")
        for statement in statements:
            await db.execute(statement)
        await db.commit()
    return db
