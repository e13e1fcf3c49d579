"""Missed schedule recovery — reconcile schedules that fell due while the process was down."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.scheduler.cron import compute_next_run, disable_invalid_schedule
from src.scheduler.errors import ScheduleNotFoundError
from src.scheduler.models import parse_iso, utc_now

if TYPE_CHECKING:
    from src.scheduler.events import ScheduleEventBus
    from src.scheduler.models import ScheduledTask
    from src.scheduler.repository import ScheduleRepository

logger = logging.getLogger(__name__)

DISMISSED_ERROR = "missed scheduled time (dismissed by user)"
INTERRUPTED_ERROR = "Interrupted by scheduler restart"


class MissedScheduleRecovery:
    """Startup reconciliation for schedules whose due time has already passed.

    Recurring schedules are quietly moved to their next future run. Missed
    one-time schedules are handed back to the caller so the user can choose
    to run or dismiss them; they are never marked completed without running,
    and the periodic scan leaves them alone until the user has decided.

    Args:
        store: Schedule repository.
        events: Observer bus notified about changed schedules.
    """

    def __init__(self, store: ScheduleRepository, events: ScheduleEventBus) -> None:
        self._store = store
        self._events = events
        # Missed one-time schedule IDs awaiting a run/dismiss decision.
        self._pending: set[str] = set()

    @property
    def pending(self) -> frozenset[str]:
        return frozenset(self._pending)

    def is_awaiting_decision(self, schedule_id: str) -> bool:
        """Whether automatic execution is held back until the user decides."""
        return schedule_id in self._pending

    def resolve(self, schedule_id: str) -> None:
        """Release a missed schedule once the user ran, dismissed or rescheduled it."""
        self._pending.discard(schedule_id)

    async def reset_interrupted_executions(self) -> list[str]:
        """Fail executions left ``running`` by a previous process.

        Nothing can still be running at startup, and a ``running`` schedule
        is never picked up by either the due scan or the missed scan.
        Returns the IDs of the schedules that were reset.
        """
        stuck = await self._store.get_running_scheduled_tasks()
        for schedule in stuck:
            await self._store.update_schedule_execution_status(
                schedule.id, "failed", INTERRUPTED_ERROR
            )
            self._events.schedule_updated(schedule.id)
            logger.warning(
                "Schedule %s was still marked running at startup; marked failed", schedule.id
            )
        return [schedule.id for schedule in stuck]

    async def handle_missed_schedules(self, now: str | None = None) -> list[ScheduledTask]:
        """Advance missed recurring schedules and collect missed one-time ones.

        Returns the missed one-time schedules, unmodified.
        """
        now = now or utc_now()
        current = parse_iso(now)
        logger.info("Checking for missed schedules")

        missed_one_time: list[ScheduledTask] = []
        for schedule in await self._store.get_active_scheduled_tasks():
            if not schedule.next_run_at or parse_iso(schedule.next_run_at) > current:
                continue

            logger.info(
                "Schedule %s was missed (next_run_at=%s)", schedule.id, schedule.next_run_at
            )
            if schedule.is_one_time:
                missed_one_time.append(schedule)
                self._pending.add(schedule.id)
                continue

            await self._advance(schedule, now)

        if missed_one_time:
            logger.info("Found %d missed one-time schedule(s)", len(missed_one_time))
        return missed_one_time

    async def dismiss_missed_schedule(self, schedule_id: str) -> None:
        """Close a missed one-time schedule the user chose not to run."""
        schedule = await self._store.get_scheduled_task(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)

        await self._store.update_schedule_status(schedule_id, "completed")
        await self._store.update_schedule_execution_status(schedule_id, "failed", DISMISSED_ERROR)
        self.resolve(schedule_id)
        self._events.schedule_updated(schedule_id)
        logger.info("Dismissed missed schedule %s", schedule_id)

    async def schedule_next(self, schedule: ScheduledTask) -> str | None:
        """Compute and store the first run of a new recurring schedule.

        Does nothing for one-time schedules or ones that already have a next
        run. Returns the stored next run, or None.
        """
        if not schedule.is_recurring or schedule.next_run_at:
            return schedule.next_run_at

        next_run = await self._advance(schedule, utc_now())
        if next_run:
            logger.info("Computed initial next run for schedule %s: %s", schedule.id, next_run)
        return next_run

    # -- Internal --------------------------------------------------------------

    async def _advance(self, schedule: ScheduledTask, now: str) -> str | None:
        next_run = None
        if schedule.cron_expression:
            next_run = compute_next_run(schedule.cron_expression, schedule.timezone, now)
        if next_run is None:
            await disable_invalid_schedule(self._store, schedule.id)
            self._events.schedule_updated(schedule.id)
            return None

        await self._store.update_next_run_time(schedule.id, next_run)
        logger.info("Schedule %s next run set to %s", schedule.id, next_run)
        return next_run
