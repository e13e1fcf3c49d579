"""ScheduleEventBus — fire-and-forget notifications about schedules and executions.

Listeners get ``(event, payload)`` and may be plain or async callables.
Delivery is best effort: a listener that raises is logged and skipped, and
async listeners run as background tasks that are never awaited. Consumers
that miss an event re-sync by querying the schedule store.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    Listener = Callable[[str, dict[str, Any]], Awaitable[None] | None]

logger = logging.getLogger(__name__)

SCHEDULE_UPDATED = "schedule-updated"
EXECUTION_CREATED = "execution-created"
EXECUTION_UPDATE = "execution-update"
EXECUTION_PROGRESS = "execution-progress"
EXECUTION_STATUS_CHANGE = "execution-status-change"
PERMISSION_REQUEST = "permission-request"
DEBUG_LOG = "debug-log"
TODO_UPDATE = "todo-update"
AUTH_ERROR = "auth-error"


class ScheduleEventBus:
    """Dispatches events to zero or more subscribed listeners."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, listener: Listener) -> None:
        """Register a listener. Subscribing the same callable twice is a no-op."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> bool:
        """Remove a listener. Returns True if it was registered."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def emit(self, event: str, payload: dict[str, Any] | None = None) -> None:
        """Send *event* to every listener without waiting for delivery."""
        data = payload or {}
        for listener in list(self._listeners):
            try:
                result = listener(event, data)
            except Exception:
                logger.exception("Event listener failed for %s", event)
                continue
            if inspect.isawaitable(result):
                self._spawn(event, result)

    def schedule_updated(self, schedule_id: str) -> None:
        self.emit(SCHEDULE_UPDATED, {"schedule_id": schedule_id})

    async def drain(self) -> None:
        """Wait for in-flight async listeners (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    # -- Internal --------------------------------------------------------------

    def _spawn(self, event: str, awaitable: Awaitable[None]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(
                    "Async event listener failed for %s", event, exc_info=t.exception()
                )

        task.add_done_callback(_done)
