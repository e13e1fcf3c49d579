"""Execution runtime contract — what the scheduler hands a claimed prompt to."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

ResultStatus = Literal["success", "error", "interrupted"]


@dataclass
class TaskConfig:
    prompt: str
    execution_id: str


@dataclass
class TaskResult:
    """Final outcome reported through ``on_complete``."""

    status: ResultStatus = "success"
    session_id: str | None = None


@dataclass
class ExecutionHandle:
    """Returned by ``start_task``. ``status`` is ``"running"`` or ``"queued"``."""

    execution_id: str
    status: str = "running"
    session_id: str | None = None


async def _ignore(*_args: Any) -> None:
    return None


@dataclass
class TaskCallbacks:
    """Async callbacks the runtime invokes while an execution progresses.

    ``on_complete`` or ``on_error`` ends the execution; the runtime calls
    one of them exactly once.
    """

    on_message: Callable[[dict[str, Any]], Awaitable[None]] = field(default=_ignore)
    on_progress: Callable[[dict[str, Any]], Awaitable[None]] = field(default=_ignore)
    on_permission_request: Callable[[dict[str, Any]], Awaitable[None]] = field(default=_ignore)
    on_complete: Callable[[TaskResult], Awaitable[None]] = field(default=_ignore)
    on_error: Callable[[BaseException], Awaitable[None]] = field(default=_ignore)
    on_status_change: Callable[[str], Awaitable[None]] = field(default=_ignore)
    on_debug: Callable[[dict[str, Any]], Awaitable[None]] = field(default=_ignore)
    on_todo_update: Callable[[list[dict[str, Any]]], Awaitable[None]] = field(default=_ignore)
    on_auth_error: Callable[[dict[str, Any]], Awaitable[None]] = field(default=_ignore)


@runtime_checkable
class ExecutionRuntime(Protocol):
    """Runs a prompt to completion, reporting through ``TaskCallbacks``.

    The scheduler never cancels or times out an execution; it only reacts to
    the completion and error callbacks. A runtime may also provide
    ``get_session_id(execution_id)``, consulted when a result carries no
    session ID.
    """

    async def start_task(
        self,
        execution_id: str,
        config: TaskConfig,
        callbacks: TaskCallbacks,
    ) -> ExecutionHandle: ...
