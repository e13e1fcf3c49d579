"""ScheduleService — create, edit and trigger schedules on behalf of the user."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from src.scheduler.cron import compute_next_run, disable_invalid_schedule
from src.scheduler.errors import ScheduleNotFoundError
from src.scheduler.validation import validate_create_schedule, validate_update_schedule

if TYPE_CHECKING:
    from src.scheduler.engine import SchedulerEngine
    from src.scheduler.models import ScheduledTask
    from src.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)


class ScheduleService:
    """User-facing schedule operations.

    Every change is validated first and announced on the engine's event bus
    afterwards. Invalid input raises ``ScheduleValidationError``; unknown IDs
    raise ``ScheduleNotFoundError``.
    """

    def __init__(self, store: ScheduleStore, engine: SchedulerEngine) -> None:
        self._store = store
        self._engine = engine

    async def create_schedule(self, config: dict[str, Any]) -> ScheduledTask:
        validated = validate_create_schedule(config)
        schedule = await self._store.create_scheduled_task(validated)
        await self._engine.recovery.schedule_next(schedule)

        created = await self._store.get_scheduled_task(schedule.id)
        self._engine.events.schedule_updated(schedule.id)
        logger.info("Created %s schedule %s", schedule.schedule_type, schedule.id)
        return created or schedule

    async def list_schedules(self) -> list[ScheduledTask]:
        return await self._store.get_all_scheduled_tasks()

    async def get_schedule(self, schedule_id: str) -> ScheduledTask | None:
        return await self._store.get_scheduled_task(schedule_id)

    async def update_schedule(self, schedule_id: str, updates: dict[str, Any]) -> ScheduledTask:
        """Apply a partial update and keep ``next_run_at`` consistent with it."""
        existing = await self._store.get_scheduled_task(schedule_id)
        if existing is None:
            raise ScheduleNotFoundError(schedule_id)

        validated = validate_update_schedule(existing, updates)
        changes = validated.changes()
        if changes:
            await self._store.update_scheduled_task(schedule_id, **changes)

        if validated.scheduled_at:
            await self._store.update_next_run_time(schedule_id, validated.scheduled_at)
            self._engine.recovery.resolve(schedule_id)

        recurring_changed = validated.schedule_type == "recurring" or validated.cron_expression
        if recurring_changed or validated.timezone:
            await self._recompute_next_run(schedule_id)

        self._engine.events.schedule_updated(schedule_id)
        updated = await self._store.get_scheduled_task(schedule_id)
        return updated or existing

    async def delete_schedule(self, schedule_id: str) -> bool:
        deleted = await self._store.delete_scheduled_task(schedule_id)
        if deleted:
            self._engine.events.schedule_updated(schedule_id)
        return deleted

    async def toggle_schedule(self, schedule_id: str, enabled: bool) -> None:
        if await self._store.get_scheduled_task(schedule_id) is None:
            raise ScheduleNotFoundError(schedule_id)
        await self._store.toggle_schedule(schedule_id, enabled)
        self._engine.events.schedule_updated(schedule_id)
        logger.info("Schedule %s %s", schedule_id, "enabled" if enabled else "disabled")

    async def run_schedule_now(self, schedule_id: str) -> str | None:
        return await self._engine.execute_schedule_now(schedule_id)

    async def dismiss_missed_schedule(self, schedule_id: str) -> None:
        await self._engine.recovery.dismiss_missed_schedule(schedule_id)

    async def get_active_schedule_count(self) -> int:
        return await self._store.get_active_schedule_count()

    # -- Internal --------------------------------------------------------------

    async def _recompute_next_run(self, schedule_id: str) -> None:
        schedule = await self._store.get_scheduled_task(schedule_id)
        if schedule is None or not schedule.is_recurring or not schedule.cron_expression:
            return

        next_run = compute_next_run(schedule.cron_expression, schedule.timezone)
        if next_run is None:
            # Rows stored without validation can still carry an unusable cron.
            await disable_invalid_schedule(self._store, schedule_id)
            return

        await self._store.update_next_run_time(schedule_id, next_run)
        # Keep the last run outcome but drop any configuration error.
        await self._store.update_schedule_execution_status(
            schedule_id, schedule.execution_status, None
        )
