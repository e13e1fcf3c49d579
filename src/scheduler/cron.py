"""Next-run calculation for cron schedules and the invalid-cron containment policy."""

from __future__ import annotations

import logging
import zoneinfo
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from croniter import croniter

from src.scheduler.models import parse_iso, to_iso

if TYPE_CHECKING:
    from src.scheduler.repository import ScheduleRepository

logger = logging.getLogger(__name__)

CRON_FIELD_COUNT = 5

INVALID_CRON_ERROR = "Invalid cron expression for timezone (failed to compute next run)"


def _resolve_now(now: datetime | str | None) -> datetime:
    if now is None:
        return datetime.now(UTC)
    if isinstance(now, str):
        return parse_iso(now)
    if now.tzinfo is None:
        return now.replace(tzinfo=UTC)
    return now


def compute_next_run(
    cron_expression: str,
    timezone: str,
    now: datetime | str | None = None,
) -> str | None:
    """Return the first occurrence of *cron_expression* strictly after *now*.

    The expression is evaluated in the IANA *timezone* so that wall-clock
    schedules stay put across DST changes. The result is a UTC ISO 8601
    string. Returns ``None`` instead of raising when the expression is not
    a valid 5-field cron or the timezone is unknown.
    """
    try:
        if len(cron_expression.split()) != CRON_FIELD_COUNT:
            logger.warning("Cron expression must have 5 fields: %r", cron_expression)
            return None
        tz = zoneinfo.ZoneInfo(timezone)
        start = _resolve_now(now).astimezone(tz)
        nxt = croniter(cron_expression, start).get_next(datetime)
        return to_iso(nxt)
    except (ValueError, KeyError, TypeError, OSError):
        logger.warning(
            "Failed to compute next run for cron %r (tz=%s)",
            cron_expression,
            timezone,
            exc_info=True,
        )
        return None


def is_valid_cron(cron_expression: str, timezone: str) -> bool:
    """Whether the expression yields at least one future run in *timezone*."""
    return compute_next_run(cron_expression, timezone) is not None


async def disable_invalid_schedule(repo: ScheduleRepository, schedule_id: str) -> None:
    """Take a schedule with an unusable cron out of automatic execution.

    The schedule is disabled, its next run cleared and its execution marked
    failed, so the periodic scan never picks it up again.
    """
    await repo.update_scheduled_task(schedule_id, enabled=False)
    await repo.update_next_run_time(schedule_id, None)
    await repo.update_schedule_execution_status(schedule_id, "failed", INVALID_CRON_ERROR)
    logger.warning("Disabled schedule %s: %s", schedule_id, INVALID_CRON_ERROR)
