"""Shared test fixtures."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from src.scheduler.events import ScheduleEventBus
from src.scheduler.history import ExecutionHistoryStore
from src.scheduler.store import ScheduleStore
from tests.fakes import FakeRuntime, RecordingListener

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def store(tmp_path: Path) -> ScheduleStore:
    """Create a ScheduleStore backed by a temp database."""
    return ScheduleStore(db_path=tmp_path / "test.db")


@pytest.fixture
def history(tmp_path: Path) -> ExecutionHistoryStore:
    return ExecutionHistoryStore(db_path=tmp_path / "test.db")


@pytest.fixture
def events() -> ScheduleEventBus:
    return ScheduleEventBus()


@pytest.fixture
def listener(events: ScheduleEventBus) -> RecordingListener:
    recorder = RecordingListener()
    events.subscribe(recorder)
    return recorder


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()
