"""ScheduledTask data model and timestamp helpers."""

from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

ScheduleType = Literal["one-time", "recurring"]
ScheduleStatus = Literal["active", "paused", "completed", "cancelled", "failed"]
ExecutionStatus = Literal["pending", "running", "completed", "failed"]

ONE_TIME: ScheduleType = "one-time"
RECURRING: ScheduleType = "recurring"

SCHEDULE_TYPES: tuple[str, ...] = (ONE_TIME, RECURRING)
SCHEDULE_STATUSES: tuple[str, ...] = ("active", "paused", "completed", "cancelled", "failed")
EXECUTION_STATUSES: tuple[str, ...] = ("pending", "running", "completed", "failed")

# Column order of the ``scheduled_tasks`` table.
COLUMNS: tuple[str, ...] = (
    "id",
    "prompt",
    "schedule_type",
    "scheduled_at",
    "cron_expression",
    "timezone",
    "next_run_at",
    "last_run_at",
    "last_task_id",
    "status",
    "execution_status",
    "execution_error",
    "enabled",
    "created_at",
    "updated_at",
)


# -- Timestamps ----------------------------------------------------------------


def to_iso(value: datetime) -> str:
    """Format an aware datetime as a UTC ISO 8601 string with millisecond precision.

    All stored instants use this form (``2026-02-04T12:00:00.000Z``) so that
    lexical comparison in SQL matches chronological order.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    utc = value.astimezone(UTC)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_iso(value: str) -> datetime:
    """Parse an ISO 8601 timestamp. Naive values are taken to be UTC."""
    parsed = datetime.fromisoformat(value.strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def utc_now() -> str:
    return to_iso(datetime.now(UTC))


def _random_suffix(length: int = 7) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def make_schedule_id() -> str:
    """Generate a new schedule ID."""
    return f"sched_{int(time.time() * 1000)}_{_random_suffix()}"


def make_execution_id() -> str:
    """Generate a new execution (task run) ID."""
    return f"task_{int(time.time() * 1000)}_{_random_suffix()}"


def make_message_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{_random_suffix()}"


# -- Model ---------------------------------------------------------------------


@dataclass
class ScheduledTask:
    """A prompt to be executed once or on a cron schedule.

    Attributes:
        id: Stable identifier (``sched_<ms>_<rand>``).
        prompt: Task instruction handed to the execution runtime.
        schedule_type: ``"one-time"`` or ``"recurring"``.
        timezone: IANA timezone used to evaluate the cron expression.
        scheduled_at: UTC instant for one-time schedules.
        cron_expression: 5-field cron expression for recurring schedules.
        next_run_at: Next due instant; ``None`` when nothing is pending.
        last_run_at: When the schedule was last claimed for execution.
        last_task_id: ID of the most recently created execution.
        status: Lifecycle of the schedule itself.
        execution_status: Lifecycle of the current or most recent run.
        execution_error: Last failure message, cleared on success.
        enabled: User toggle, independent of ``status``.
        created_at: ISO 8601 timestamp.
        updated_at: ISO 8601 timestamp.
    """

    id: str
    prompt: str
    schedule_type: str
    timezone: str
    scheduled_at: str | None = None
    cron_expression: str | None = None
    next_run_at: str | None = None
    last_run_at: str | None = None
    last_task_id: str | None = None
    status: str = "active"
    execution_status: str = "pending"
    execution_error: str | None = None
    enabled: bool = True
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utc_now()
        if not self.updated_at:
            self.updated_at = self.created_at

    # -- Convenience properties ------------------------------------------------

    @property
    def is_one_time(self) -> bool:
        return self.schedule_type == ONE_TIME

    @property
    def is_recurring(self) -> bool:
        return self.schedule_type == RECURRING

    @property
    def is_running(self) -> bool:
        return self.execution_status == "running"

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``scheduled_tasks`` column order."""
        return (
            self.id,
            self.prompt,
            self.schedule_type,
            self.scheduled_at,
            self.cron_expression,
            self.timezone,
            self.next_run_at,
            self.last_run_at,
            self.last_task_id,
            self.status,
            self.execution_status,
            self.execution_error,
            int(self.enabled),
            self.created_at,
            self.updated_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> ScheduledTask:
        """Deserialize from a SQLite row tuple in ``COLUMNS`` order."""
        return cls(
            id=row[0],
            prompt=row[1],
            schedule_type=row[2],
            scheduled_at=row[3],
            cron_expression=row[4],
            timezone=row[5],
            next_run_at=row[6],
            last_run_at=row[7],
            last_task_id=row[8],
            status=row[9],
            execution_status=row[10],
            execution_error=row[11],
            enabled=bool(row[12]),
            created_at=row[13],
            updated_at=row[14],
        )
