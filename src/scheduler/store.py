"""ScheduleStore — aiosqlite persistence for scheduled tasks."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import aiosqlite

from src.config import settings
from src.db import get_connection
from src.scheduler.models import (
    COLUMNS,
    EXECUTION_STATUSES,
    ONE_TIME,
    SCHEDULE_STATUSES,
    SCHEDULE_TYPES,
    ScheduledTask,
    make_schedule_id,
    parse_iso,
    to_iso,
    utc_now,
)
from src.scheduler.repository import UNSET

if TYPE_CHECKING:
    from pathlib import Path

    from src.scheduler.validation import CreateScheduleConfig

logger = logging.getLogger(__name__)


def _in(values: tuple[str, ...]) -> str:
    return ", ".join(f"'{value}'" for value in values)


_CREATE_TABLE = f"""
CREATE TABLE IF NOT EXISTS scheduled_tasks (
    id TEXT PRIMARY KEY,
    prompt TEXT NOT NULL,
    schedule_type TEXT NOT NULL CHECK (schedule_type IN ({_in(SCHEDULE_TYPES)})),
    scheduled_at TEXT,
    cron_expression TEXT,
    timezone TEXT NOT NULL,
    next_run_at TEXT,
    last_run_at TEXT,
    last_task_id TEXT,
    status TEXT NOT NULL DEFAULT 'active'
        CHECK (status IN ({_in(SCHEDULE_STATUSES)})),
    execution_status TEXT NOT NULL DEFAULT 'pending'
        CHECK (execution_status IN ({_in(EXECUTION_STATUSES)})),
    execution_error TEXT,
    enabled INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    CHECK (
        (schedule_type = 'one-time' AND scheduled_at IS NOT NULL) OR
        (schedule_type = 'recurring' AND cron_expression IS NOT NULL)
    )
)
"""

_CREATE_INDEXES = (
    """
    CREATE INDEX IF NOT EXISTS idx_scheduled_next_run
    ON scheduled_tasks(next_run_at)
    WHERE status = 'active' AND enabled = 1
    """,
    "CREATE INDEX IF NOT EXISTS idx_scheduled_status ON scheduled_tasks(status)",
    """
    CREATE INDEX IF NOT EXISTS idx_scheduled_execution_status
    ON scheduled_tasks(execution_status)
    """,
)

_SELECT = f"SELECT {', '.join(COLUMNS)} FROM scheduled_tasks"

# Fields that update_scheduled_task() may write.
_UPDATABLE = frozenset(
    {
        "prompt",
        "schedule_type",
        "scheduled_at",
        "cron_expression",
        "timezone",
        "status",
        "enabled",
    }
)

_CLAIM_SET = """
    SET execution_status = 'running',
        execution_error = NULL,
        last_run_at = ?,
        next_run_at = ?,
        updated_at = ?
"""


def _normalise(timestamp: str) -> str:
    return to_iso(parse_iso(timestamp))


class ScheduleStore:
    """Persists scheduled tasks in SQLite and implements ``ScheduleRepository``.

    Every operation opens its own connection, so two concurrent claims
    contend on the SQLite write lock and the ``WHERE`` clause of the claim
    ``UPDATE`` decides the winner. Pass an explicit *db_path* for test
    isolation (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    @property
    def db_path(self) -> Path:
        return self._db_path

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        if self._initialised:
            return await get_connection(self._db_path)
        db = await get_connection(self._db_path, (_CREATE_TABLE, *_CREATE_INDEXES))
        self._initialised = True
        return db

    async def _fetch_all(self, sql: str, params: tuple = ()) -> list[ScheduledTask]:
        db = await self._connect()
        try:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
            return [ScheduledTask.from_row(row) for row in rows]
        finally:
            await db.close()

    async def _execute(self, sql: str, params: tuple | list = ()) -> int:
        """Run a single write statement. Returns the affected row count."""
        db = await self._connect()
        try:
            cursor = await db.execute(sql, params)
            await db.commit()
            return cursor.rowcount
        finally:
            await db.close()

    # -- Create / read ---------------------------------------------------------

    async def add_task(self, task: ScheduledTask) -> ScheduledTask:
        """Insert a fully formed schedule. Returns the same object."""
        placeholders = ", ".join("?" for _ in COLUMNS)
        await self._execute(
            f"INSERT INTO scheduled_tasks ({', '.join(COLUMNS)}) VALUES ({placeholders})",
            task.to_row(),
        )
        logger.info("Added schedule: %s (%s)", task.id, task.schedule_type)
        return task

    async def create_scheduled_task(self, config: CreateScheduleConfig) -> ScheduledTask:
        """Create a schedule from validated config.

        One-time schedules are due at ``scheduled_at``; recurring schedules
        start without a next run, which the scheduler fills in afterwards.
        """
        now = utc_now()
        task = ScheduledTask(
            id=make_schedule_id(),
            prompt=config.prompt,
            schedule_type=config.schedule_type,
            scheduled_at=config.scheduled_at,
            cron_expression=config.cron_expression,
            timezone=config.timezone,
            next_run_at=config.scheduled_at if config.schedule_type == ONE_TIME else None,
            created_at=now,
            updated_at=now,
        )
        return await self.add_task(task)

    async def get_scheduled_task(self, schedule_id: str) -> ScheduledTask | None:
        """Fetch a schedule by ID, or None if not found."""
        tasks = await self._fetch_all(f"{_SELECT} WHERE id = ?", (schedule_id,))
        return tasks[0] if tasks else None

    async def get_all_scheduled_tasks(self) -> list[ScheduledTask]:
        """Return every non-cancelled schedule, soonest first, unscheduled last."""
        return await self._fetch_all(
            f"""{_SELECT}
            WHERE status != 'cancelled'
            ORDER BY
                CASE WHEN next_run_at IS NULL THEN 1 ELSE 0 END,
                next_run_at ASC"""
        )

    async def get_active_scheduled_tasks(self) -> list[ScheduledTask]:
        """Return all active and enabled schedules."""
        return await self._fetch_all(
            f"{_SELECT} WHERE status = 'active' AND enabled = 1 ORDER BY next_run_at ASC"
        )

    async def get_schedules_ready_to_run(self, now: str) -> list[ScheduledTask]:
        """Return schedules that are due and not currently running."""
        return await self._fetch_all(
            f"""{_SELECT}
            WHERE status = 'active'
              AND enabled = 1
              AND execution_status != 'running'
              AND next_run_at IS NOT NULL
              AND next_run_at <= ?
            ORDER BY next_run_at ASC""",
            (_normalise(now),),
        )

    async def get_running_scheduled_tasks(self) -> list[ScheduledTask]:
        """Return schedules whose execution is marked as in flight."""
        return await self._fetch_all(f"{_SELECT} WHERE execution_status = 'running'")

    async def get_active_schedule_count(self) -> int:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM scheduled_tasks WHERE status = 'active' AND enabled = 1"
            )
            row = await cursor.fetchone()
            return int(row[0]) if row else 0
        finally:
            await db.close()

    # -- Updates ---------------------------------------------------------------

    async def update_scheduled_task(self, schedule_id: str, **fields: Any) -> None:
        """Update the given columns. Unknown field names raise ValueError."""
        unknown = set(fields) - _UPDATABLE
        if unknown:
            msg = f"Cannot update schedule fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        assignments = ["updated_at = ?"]
        values: list[Any] = [utc_now()]
        for name, value in fields.items():
            assignments.append(f"{name} = ?")
            values.append(int(value) if name == "enabled" else value)
        values.append(schedule_id)
        await self._execute(
            f"UPDATE scheduled_tasks SET {', '.join(assignments)} WHERE id = ?",
            values,
        )

    async def update_next_run_time(self, schedule_id: str, next_run_at: str | None) -> None:
        """Set or clear the next_run_at timestamp."""
        await self._execute(
            "UPDATE scheduled_tasks SET next_run_at = ?, updated_at = ? WHERE id = ?",
            (_normalise(next_run_at) if next_run_at else None, utc_now(), schedule_id),
        )

    async def mark_schedule_executed(self, schedule_id: str, execution_id: str) -> None:
        """Record the execution created for the latest run."""
        now = utc_now()
        await self._execute(
            """
            UPDATE scheduled_tasks
            SET last_run_at = COALESCE(last_run_at, ?), last_task_id = ?, updated_at = ?
            WHERE id = ?
            """,
            (now, execution_id, now, schedule_id),
        )

    async def toggle_schedule(self, schedule_id: str, enabled: bool) -> None:
        await self._execute(
            "UPDATE scheduled_tasks SET enabled = ?, updated_at = ? WHERE id = ?",
            (int(enabled), utc_now(), schedule_id),
        )

    async def update_schedule_status(self, schedule_id: str, status: str) -> None:
        await self._execute(
            "UPDATE scheduled_tasks SET status = ?, updated_at = ? WHERE id = ?",
            (status, utc_now(), schedule_id),
        )

    async def update_schedule_execution_status(
        self,
        schedule_id: str,
        execution_status: str,
        execution_error: str | None = UNSET,
    ) -> None:
        """Set the execution status, and the error message only when one is passed."""
        if execution_error is UNSET:
            await self._execute(
                "UPDATE scheduled_tasks SET execution_status = ?, updated_at = ? WHERE id = ?",
                (execution_status, utc_now(), schedule_id),
            )
            return
        await self._execute(
            """
            UPDATE scheduled_tasks
            SET execution_status = ?, execution_error = ?, updated_at = ?
            WHERE id = ?
            """,
            (execution_status, execution_error, utc_now(), schedule_id),
        )

    async def delete_scheduled_task(self, schedule_id: str) -> bool:
        """Delete a schedule. Returns True if a row was removed."""
        deleted = await self._execute("DELETE FROM scheduled_tasks WHERE id = ?", (schedule_id,))
        if deleted:
            logger.info("Deleted schedule: %s", schedule_id)
        return deleted > 0

    # -- Claims ----------------------------------------------------------------

    async def _claim(
        self,
        guard: str,
        schedule_id: str,
        now: str,
        next_run_at: str | None,
        next_status: str | None,
    ) -> bool:
        now = _normalise(now)
        set_sql = _CLAIM_SET
        values: list[Any] = [now, _normalise(next_run_at) if next_run_at else None, now]
        if next_status:
            set_sql += ", status = ?"
            values.append(next_status)
        values.append(schedule_id)
        changed = await self._execute(
            f"UPDATE scheduled_tasks {set_sql} WHERE id = ? AND execution_status != 'running'"
            f"{guard}",
            values,
        )
        return changed == 1

    async def claim_due_schedule_execution(
        self,
        schedule_id: str,
        now: str,
        next_run_at: str | None,
        next_status: str | None = None,
    ) -> bool:
        """Atomically claim an automatic run.

        Succeeds only for an active, enabled schedule that is not already
        running. Returns True if this call won the claim.
        """
        return await self._claim(
            " AND status = 'active' AND enabled = 1",
            schedule_id,
            now,
            next_run_at,
            next_status,
        )

    async def claim_manual_schedule_execution(
        self,
        schedule_id: str,
        now: str,
        next_run_at: str | None,
        next_status: str | None = None,
    ) -> bool:
        """Atomically claim a manual "run now".

        Paused or disabled schedules may be run by hand; only a run already
        in flight blocks the claim.
        """
        return await self._claim("", schedule_id, now, next_run_at, next_status)
