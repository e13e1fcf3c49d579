"""Test doubles shared across the scheduler tests."""

from __future__ import annotations

from typing import Any

from src.scheduler.models import ScheduledTask
from src.scheduler.runtime import ExecutionHandle, TaskCallbacks, TaskConfig


class FakeRuntime:
    """Execution runtime that records started tasks and lets tests drive callbacks."""

    def __init__(self, status: str = "running", fail_with: Exception | None = None) -> None:
        self.status = status
        self.fail_with = fail_with
        self.started: list[tuple[str, TaskConfig]] = []
        self.callbacks: dict[str, TaskCallbacks] = {}
        self.session_ids: dict[str, str] = {}

    async def start_task(
        self,
        execution_id: str,
        config: TaskConfig,
        callbacks: TaskCallbacks,
    ) -> ExecutionHandle:
        if self.fail_with is not None:
            raise self.fail_with
        self.started.append((execution_id, config))
        self.callbacks[execution_id] = callbacks
        return ExecutionHandle(execution_id=execution_id, status=self.status)

    def get_session_id(self, execution_id: str) -> str | None:
        return self.session_ids.get(execution_id)


class RecordingListener:
    """Event listener that keeps everything it receives."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [event for event, _ in self.events]

    def payloads(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]


def make_schedule(
    schedule_id: str = "sched1",
    schedule_type: str = "recurring",
    **kwargs: Any,
) -> ScheduledTask:
    defaults: dict[str, Any] = {
        "prompt": "Summarize my inbox",
        "timezone": "America/New_York",
        "created_at": "2026-01-01T00:00:00.000Z",
    }
    if schedule_type == "recurring":
        defaults["cron_expression"] = "0 9 * * *"
    else:
        defaults["scheduled_at"] = "2026-02-01T09:00:00.000Z"
        defaults["next_run_at"] = "2026-02-01T09:00:00.000Z"
    defaults.update(kwargs)
    return ScheduledTask(id=schedule_id, schedule_type=schedule_type, **defaults)


# Targets for load_runtime() in the app tests.
shared_runtime = FakeRuntime()


def build_runtime() -> FakeRuntime:
    return FakeRuntime(status="queued")


not_a_runtime = object()
