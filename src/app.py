"""Process bootstrap — builds the scheduler components and owns their lifetime."""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from src.config import settings
from src.scheduler.engine import SchedulerEngine
from src.scheduler.events import ScheduleEventBus
from src.scheduler.history import ExecutionHistoryStore
from src.scheduler.missed import MissedScheduleRecovery
from src.scheduler.service import ScheduleService
from src.scheduler.store import ScheduleStore

if TYPE_CHECKING:
    from pathlib import Path

    from src.scheduler.models import ScheduledTask
    from src.scheduler.runtime import ExecutionRuntime

logger = logging.getLogger(__name__)


class SchedulerApp:
    """Explicitly wired scheduler: store, history, events, recovery, engine, service.

    Whatever needs to trigger manual runs or shut the scheduler down gets a
    reference to this object; there is no module-level scheduler instance.

    Args:
        runtime: Execution runtime that carries out scheduled prompts.
        db_path: SQLite file (default ``settings.database_path``).
        interval_seconds: Seconds between due-schedule scans.
    """

    def __init__(
        self,
        runtime: ExecutionRuntime,
        db_path: Path | None = None,
        interval_seconds: int | None = None,
    ) -> None:
        self.store = ScheduleStore(db_path=db_path)
        self.history = ExecutionHistoryStore(db_path=db_path)
        self.events = ScheduleEventBus()
        self.recovery = MissedScheduleRecovery(self.store, self.events)
        self.engine = SchedulerEngine(
            store=self.store,
            runtime=runtime,
            history=self.history,
            events=self.events,
            recovery=self.recovery,
            interval_seconds=interval_seconds,
        )
        self.service = ScheduleService(self.store, self.engine)
        self.missed: list[ScheduledTask] = []

    async def start(self) -> list[ScheduledTask]:
        """Start the engine. Returns missed one-time schedules awaiting a decision."""
        missed = await self.engine.start()
        if missed:
            self.missed = missed
            for schedule in missed:
                logger.warning(
                    "Missed one-time schedule %s (was due %s) needs a run/dismiss decision",
                    schedule.id,
                    schedule.next_run_at,
                )
        return missed

    async def stop(self) -> None:
        await self.engine.stop()
        await self.events.drain()

    async def __aenter__(self) -> SchedulerApp:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()


def load_runtime(target: str | None = None) -> ExecutionRuntime:
    """Import the execution runtime named by ``"package.module:attribute"``.

    A class or factory is called with no arguments; anything else is used
    as the runtime instance.
    """
    target = target or settings.execution_runtime
    if not target or ":" not in target:
        msg = f"EXECUTION_RUNTIME must look like 'package.module:attribute', got {target!r}"
        raise ValueError(msg)

    module_name, _, attribute = target.partition(":")
    obj = getattr(importlib.import_module(module_name), attribute)
    if isinstance(obj, type) or (callable(obj) and not hasattr(obj, "start_task")):
        obj = obj()
    runtime = obj
    if not hasattr(runtime, "start_task"):
        msg = f"{target} does not provide an execution runtime"
        raise TypeError(msg)
    return runtime
