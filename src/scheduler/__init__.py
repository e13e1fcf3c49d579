"""Scheduled prompt system — models, persistence, claims, recovery and execution."""

from src.scheduler.cron import compute_next_run
from src.scheduler.engine import SchedulerEngine
from src.scheduler.errors import (
    ScheduleAlreadyRunningError,
    ScheduleError,
    ScheduleNotActiveError,
    ScheduleNotFoundError,
    ScheduleValidationError,
)
from src.scheduler.events import ScheduleEventBus
from src.scheduler.history import ExecutionHistoryStore
from src.scheduler.missed import MissedScheduleRecovery
from src.scheduler.models import ScheduledTask
from src.scheduler.repository import ScheduleRepository
from src.scheduler.runtime import (
    ExecutionHandle,
    ExecutionRuntime,
    TaskCallbacks,
    TaskConfig,
    TaskResult,
)
from src.scheduler.service import ScheduleService
from src.scheduler.store import ScheduleStore

__all__ = [
    "ExecutionHandle",
    "ExecutionHistoryStore",
    "ExecutionRuntime",
    "MissedScheduleRecovery",
    "ScheduleAlreadyRunningError",
    "ScheduleError",
    "ScheduleEventBus",
    "ScheduleNotActiveError",
    "ScheduleNotFoundError",
    "ScheduleRepository",
    "ScheduleService",
    "ScheduleStore",
    "ScheduleValidationError",
    "ScheduledTask",
    "SchedulerEngine",
    "TaskCallbacks",
    "TaskConfig",
    "TaskResult",
    "compute_next_run",
]
