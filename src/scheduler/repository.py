"""ScheduleRepository protocol — the storage contract the scheduler depends on."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from src.scheduler.models import ScheduledTask

# Sentinel for "leave execution_error untouched".
UNSET: Any = object()


@runtime_checkable
class ScheduleRepository(Protocol):
    """Durable store of schedules with atomic execution claims.

    The two ``claim_*`` operations must be a single compare-and-set at the
    storage layer: of any number of concurrent callers, at most one sees
    ``True``.
    """

    async def get_scheduled_task(self, schedule_id: str) -> ScheduledTask | None: ...

    async def get_active_scheduled_tasks(self) -> list[ScheduledTask]:
        """Schedules with ``status == active`` and ``enabled``."""
        ...

    async def get_schedules_ready_to_run(self, now: str) -> list[ScheduledTask]:
        """Schedules eligible for automatic execution as of *now*."""
        ...

    async def get_running_scheduled_tasks(self) -> list[ScheduledTask]: ...

    async def update_scheduled_task(self, schedule_id: str, **fields: Any) -> None: ...

    async def update_next_run_time(self, schedule_id: str, next_run_at: str | None) -> None: ...

    async def mark_schedule_executed(self, schedule_id: str, execution_id: str) -> None: ...

    async def update_schedule_status(self, schedule_id: str, status: str) -> None: ...

    async def update_schedule_execution_status(
        self,
        schedule_id: str,
        execution_status: str,
        execution_error: str | None = UNSET,
    ) -> None:
        """Set the run status; *execution_error* is only written when passed."""
        ...

    async def claim_due_schedule_execution(
        self,
        schedule_id: str,
        now: str,
        next_run_at: str | None,
        next_status: str | None = None,
    ) -> bool:
        """Claim an automatic run. Requires not running, active and enabled."""
        ...

    async def claim_manual_schedule_execution(
        self,
        schedule_id: str,
        now: str,
        next_run_at: str | None,
        next_status: str | None = None,
    ) -> bool:
        """Claim a manual run. Only requires that no run is in flight."""
        ...
