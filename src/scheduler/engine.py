"""SchedulerEngine — periodic scan, atomic claims and hand-off to the execution runtime."""

from __future__ import annotations

import functools
import logging
from dataclasses import asdict
from datetime import UTC
from typing import TYPE_CHECKING, Any, Literal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.config import settings
from src.scheduler.cron import compute_next_run, disable_invalid_schedule
from src.scheduler.errors import (
    ScheduleAlreadyRunningError,
    ScheduleNotActiveError,
    ScheduleNotFoundError,
)
from src.scheduler.events import (
    AUTH_ERROR,
    DEBUG_LOG,
    EXECUTION_CREATED,
    EXECUTION_PROGRESS,
    EXECUTION_STATUS_CHANGE,
    EXECUTION_UPDATE,
    PERMISSION_REQUEST,
    TODO_UPDATE,
    ScheduleEventBus,
)
from src.scheduler.history import (
    ExecutionHistoryStore,
    ExecutionMessage,
    ExecutionRecord,
    to_history_message,
)
from src.scheduler.missed import MissedScheduleRecovery
from src.scheduler.models import make_execution_id, utc_now
from src.scheduler.runtime import TaskCallbacks, TaskConfig, TaskResult

if TYPE_CHECKING:
    from src.scheduler.models import ScheduledTask
    from src.scheduler.repository import ScheduleRepository
    from src.scheduler.runtime import ExecutionRuntime

logger = logging.getLogger(__name__)

Trigger = Literal["due", "manual"]

_CHECK_JOB_ID = "schedule-check"

# Schedule-level error messages for runs that did not succeed.
_RESULT_ERRORS = {
    "error": "Execution failed",
    "interrupted": "Execution interrupted",
}

# Runtime result status -> execution history status.
_HISTORY_STATUS = {
    "success": "completed",
    "error": "failed",
    "interrupted": "interrupted",
}


def _logged(method):
    """Keep a failing callback from propagating into the execution runtime."""

    @functools.wraps(method)
    async def wrapper(self: _ExecutionCallbacks, *args: Any) -> None:
        try:
            await method(self, *args)
        except Exception:
            logger.exception(
                "Callback %s failed for execution %s", method.__name__, self.execution_id
            )

    return wrapper


class _ExecutionCallbacks:
    """Callbacks wired for a single execution started from a schedule.

    Only the first terminal callback (``on_complete`` or ``on_error``) is
    handled; the schedule outcome is written back even when the history
    bookkeeping fails.
    """

    def __init__(self, engine: SchedulerEngine, schedule_id: str, execution_id: str) -> None:
        self._engine = engine
        self.schedule_id = schedule_id
        self.execution_id = execution_id
        self.finished = False

    def build(self) -> TaskCallbacks:
        return TaskCallbacks(
            on_message=self.on_message,
            on_progress=self.on_progress,
            on_permission_request=self.on_permission_request,
            on_complete=self.on_complete,
            on_error=self.on_error,
            on_status_change=self.on_status_change,
            on_debug=self.on_debug,
            on_todo_update=self.on_todo_update,
            on_auth_error=self.on_auth_error,
        )

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        self._engine.events.emit(event, {"execution_id": self.execution_id, **payload})

    @_logged
    async def on_message(self, message: dict[str, Any]) -> None:
        entry = to_history_message(message)
        if entry is None:
            return
        await self._engine.history.add_message(self.execution_id, entry)
        self._emit(EXECUTION_UPDATE, {"type": "message", "message": asdict(entry)})

    @_logged
    async def on_progress(self, progress: dict[str, Any]) -> None:
        self._emit(EXECUTION_PROGRESS, dict(progress))

    @_logged
    async def on_permission_request(self, request: dict[str, Any]) -> None:
        self._emit(PERMISSION_REQUEST, {"request": request})

    @_logged
    async def on_status_change(self, status: str) -> None:
        await self._engine.history.update_status(self.execution_id, status)
        self._emit(EXECUTION_STATUS_CHANGE, {"status": status})

    @_logged
    async def on_debug(self, log: dict[str, Any]) -> None:
        if not settings.debug_mode:
            return
        self._emit(DEBUG_LOG, {"timestamp": utc_now(), **log})

    @_logged
    async def on_todo_update(self, todos: list[dict[str, Any]]) -> None:
        await self._engine.history.save_todos(self.execution_id, todos)
        self._emit(TODO_UPDATE, {"todos": todos})

    @_logged
    async def on_auth_error(self, error: dict[str, Any]) -> None:
        self._emit(AUTH_ERROR, {"error": error})

    @_logged
    async def on_complete(self, result: TaskResult) -> None:
        if self.finished:
            return
        status = result.status or "success"
        if status in _RESULT_ERRORS:
            outcome, error = "failed", _RESULT_ERRORS[status]
        else:
            outcome, error = "completed", None

        try:
            await self._record_completion(result, status)
        finally:
            await self._finish(outcome, error)

    @_logged
    async def on_error(self, error: BaseException) -> None:
        if self.finished:
            return
        message = str(error) or error.__class__.__name__
        logger.error("Execution %s error: %s", self.execution_id, message)
        try:
            await self._engine.history.update_status(self.execution_id, "failed", utc_now())
            self._emit(EXECUTION_UPDATE, {"type": "error", "error": message})
        finally:
            await self._finish("failed", message)

    async def _record_completion(self, result: TaskResult, status: str) -> None:
        history = self._engine.history
        session_id = result.session_id
        if not session_id:
            # Runtimes are not required to expose session lookups.
            get_session_id = getattr(self._engine.runtime, "get_session_id", None)
            session_id = get_session_id(self.execution_id) if get_session_id else None
        if session_id:
            await history.update_session_id(self.execution_id, session_id)
        # Todos survive failed and interrupted runs.
        if status == "success":
            await history.clear_todos(self.execution_id)

        await history.update_status(
            self.execution_id, _HISTORY_STATUS.get(status, "completed"), utc_now()
        )
        self._emit(EXECUTION_UPDATE, {"type": "complete", "result": asdict(result)})

    async def _finish(self, execution_status: str, error: str | None) -> None:
        if self.finished:
            return
        self.finished = True
        await self._engine.store.update_schedule_execution_status(
            self.schedule_id, execution_status, error
        )
        logger.info(
            "Schedule %s execution %s finished: %s",
            self.schedule_id,
            self.execution_id,
            execution_status,
        )
        self._engine.events.schedule_updated(self.schedule_id)


class SchedulerEngine:
    """Runs due schedules exactly once and keeps their run state up to date.

    A repeating APScheduler job calls :meth:`tick`, which claims each due
    schedule through the store's atomic claim and starts an execution on the
    runtime. Manual runs go through the same claim, so the timer and
    "run now" can never both start the same schedule.

    Args:
        store: Schedule repository with atomic claim operations.
        runtime: Execution runtime that carries out prompts.
        history: Store for execution transcripts and status.
        events: Observer bus for UI updates (a private bus if omitted).
        recovery: Startup recovery (built from *store* and *events* if omitted).
        interval_seconds: Seconds between scans (default from settings).
    """

    def __init__(
        self,
        store: ScheduleRepository,
        runtime: ExecutionRuntime,
        history: ExecutionHistoryStore,
        events: ScheduleEventBus | None = None,
        recovery: MissedScheduleRecovery | None = None,
        interval_seconds: int | None = None,
    ) -> None:
        self.store = store
        self.runtime = runtime
        self.history = history
        self.events = events or ScheduleEventBus()
        self.recovery = recovery or MissedScheduleRecovery(store, self.events)
        self._interval = interval_seconds or settings.scheduler_check_interval_seconds
        self._scheduler = AsyncIOScheduler(timezone=UTC)
        self._running = False
        self._checking = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def checking(self) -> bool:
        return self._checking

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> list[ScheduledTask]:
        """Recover from downtime, run one scan and arm the periodic timer.

        Returns the one-time schedules that were missed while the process
        was down; they are left untouched for the user to run or dismiss.
        Calling ``start`` on a running engine does nothing.
        """
        if self._running:
            logger.info("Scheduler already running")
            return []

        self._running = True
        try:
            await self.recovery.reset_interrupted_executions()
            missed = await self.recovery.handle_missed_schedules()
            await self._run_check()

            self._scheduler = AsyncIOScheduler(timezone=UTC)
            # Overlapping runs reach tick(), which skips them via the checking flag.
            self._scheduler.add_job(
                self._run_check,
                trigger=IntervalTrigger(seconds=self._interval),
                id=_CHECK_JOB_ID,
                name="Check due schedules",
                max_instances=2,
                coalesce=True,
                replace_existing=True,
            )
            self._scheduler.start()
        except Exception:
            self._running = False
            raise

        logger.info(
            "Scheduler started (interval=%ds, missed one-time schedules=%d)",
            self._interval,
            len(missed),
        )
        return missed

    async def stop(self) -> None:
        """Stop the periodic timer. In-flight executions keep running."""
        if not self._running:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler stopped")

    # -- Scanning --------------------------------------------------------------

    async def _run_check(self) -> None:
        """Timer entry point. A failing scan is logged and retried next interval."""
        try:
            await self.tick()
        except Exception:
            logger.exception("Error during scheduled check")

    async def tick(self, now: str | None = None) -> int:
        """Claim and start every schedule that is due at *now*.

        Returns the number of executions started. A call made while a scan
        is already in progress returns 0 without touching the store.
        """
        if self._checking:
            logger.debug("Schedule check already in progress, skipping")
            return 0

        self._checking = True
        try:
            now = now or utc_now()
            due = await self.store.get_schedules_ready_to_run(now)
            if not due:
                return 0

            logger.info("Found %d due schedule(s)", len(due))
            started = 0
            for schedule in due:
                if self.recovery.is_awaiting_decision(schedule.id):
                    logger.debug("Schedule %s is awaiting a missed-run decision", schedule.id)
                    continue
                try:
                    if await self.execute_schedule(schedule, trigger="due", now=now):
                        started += 1
                except Exception:
                    logger.exception("Unexpected error executing schedule %s", schedule.id)
            return started
        finally:
            self._checking = False

    # -- Execution -------------------------------------------------------------

    async def execute_schedule(
        self,
        schedule: ScheduledTask,
        trigger: Trigger = "due",
        now: str | None = None,
    ) -> str | None:
        """Claim *schedule* and start an execution for it.

        Returns the new execution ID, or None when the schedule was not run
        (unusable cron, lost claim, or a failure while starting).
        """
        now = now or utc_now()
        logger.info("Executing schedule %s (trigger=%s)", schedule.id, trigger)

        next_run_at: str | None = None
        if schedule.is_recurring:
            if schedule.cron_expression:
                next_run_at = compute_next_run(schedule.cron_expression, schedule.timezone, now)
            if next_run_at is None:
                await disable_invalid_schedule(self.store, schedule.id)
                self.events.schedule_updated(schedule.id)
                return None

        # Claiming a one-time schedule completes it.
        next_status = "completed" if schedule.is_one_time else None
        claim = (
            self.store.claim_manual_schedule_execution
            if trigger == "manual"
            else self.store.claim_due_schedule_execution
        )

        try:
            claimed = await claim(schedule.id, now, next_run_at, next_status)
            if not claimed:
                logger.info(
                    "Schedule %s not claimed (already running or no longer eligible)",
                    schedule.id,
                )
                return None

            self.events.schedule_updated(schedule.id)
            return await self._start_execution(schedule)
        except Exception as exc:
            logger.exception("Failed to execute schedule %s", schedule.id)
            await self._record_failure(schedule.id, str(exc) or exc.__class__.__name__)
            return None

    async def execute_schedule_now(self, schedule_id: str) -> str | None:
        """Run a schedule immediately at the user's request.

        Raises:
            ScheduleNotFoundError: No schedule with this ID.
            ScheduleNotActiveError: The schedule is paused or finished.
            ScheduleAlreadyRunningError: An execution is already in flight.
        """
        schedule = await self.store.get_scheduled_task(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)
        if schedule.status != "active":
            raise ScheduleNotActiveError(schedule_id, schedule.status)
        if schedule.is_running:
            raise ScheduleAlreadyRunningError(schedule_id)
        self.recovery.resolve(schedule_id)
        return await self.execute_schedule(schedule, trigger="manual")

    def compute_next_run(self, cron_expression: str, timezone: str) -> str | None:
        return compute_next_run(cron_expression, timezone)

    # -- Internal --------------------------------------------------------------

    async def _start_execution(self, schedule: ScheduledTask) -> str:
        execution_id = make_execution_id()
        record = ExecutionRecord(
            id=execution_id,
            prompt=schedule.prompt,
            status="pending",
            schedule_id=schedule.id,
            messages=[ExecutionMessage(type="user", content=schedule.prompt)],
        )
        await self.history.save_execution(record)

        callbacks = _ExecutionCallbacks(self, schedule.id, execution_id)
        try:
            handle = await self.runtime.start_task(
                execution_id,
                TaskConfig(prompt=schedule.prompt, execution_id=execution_id),
                callbacks.build(),
            )
        except Exception:
            await self.history.update_status(execution_id, "failed", utc_now())
            raise

        # A fast runtime may already have reported a final status.
        if not callbacks.finished:
            record.status = handle.status
            await self.history.update_status(execution_id, handle.status)

        self.events.emit(
            EXECUTION_CREATED,
            {
                "execution_id": execution_id,
                "schedule_id": schedule.id,
                "prompt": schedule.prompt,
                "status": record.status,
            },
        )
        await self.store.mark_schedule_executed(schedule.id, execution_id)
        self.events.schedule_updated(schedule.id)
        logger.info("Schedule %s started execution %s", schedule.id, execution_id)
        return execution_id

    async def _record_failure(self, schedule_id: str, message: str) -> None:
        try:
            await self.store.update_schedule_execution_status(schedule_id, "failed", message)
        except Exception:
            logger.exception("Could not record failure for schedule %s", schedule_id)
        self.events.schedule_updated(schedule_id)
