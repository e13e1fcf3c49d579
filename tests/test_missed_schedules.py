"""Tests for MissedScheduleRecovery — startup reconciliation and dismissal."""

import pytest

from src.scheduler.cron import INVALID_CRON_ERROR
from src.scheduler.engine import SchedulerEngine
from src.scheduler.errors import ScheduleNotFoundError
from src.scheduler.events import SCHEDULE_UPDATED, ScheduleEventBus
from src.scheduler.history import ExecutionHistoryStore
from src.scheduler.missed import DISMISSED_ERROR, MissedScheduleRecovery
from src.scheduler.models import parse_iso
from src.scheduler.store import ScheduleStore
from tests.fakes import FakeRuntime, RecordingListener, make_schedule

NOW = "2026-02-04T12:00:00Z"


@pytest.fixture
def recovery(store: ScheduleStore, events: ScheduleEventBus) -> MissedScheduleRecovery:
    return MissedScheduleRecovery(store, events)


# -- handle_missed_schedules ---------------------------------------------------


async def test_missed_one_time_returned_unmodified(
    recovery: MissedScheduleRecovery, store: ScheduleStore
) -> None:
    before = make_schedule(
        "once",
        schedule_type="one-time",
        scheduled_at="2026-02-01T09:00:00.000Z",
        next_run_at="2026-02-01T09:00:00.000Z",
    )
    await store.add_task(before)

    missed = await recovery.handle_missed_schedules(NOW)

    assert [s.id for s in missed] == ["once"]
    assert await store.get_scheduled_task("once") == before
    assert recovery.is_awaiting_decision("once")


async def test_missed_recurring_advanced_without_running(
    recovery: MissedScheduleRecovery, store: ScheduleStore
) -> None:
    await store.add_task(make_schedule("daily", next_run_at="2026-02-01T14:00:00.000Z"))

    missed = await recovery.handle_missed_schedules(NOW)

    assert missed == []
    schedule = await store.get_scheduled_task("daily")
    assert schedule.next_run_at == "2026-02-04T14:00:00.000Z"
    assert parse_iso(schedule.next_run_at) > parse_iso(NOW)
    assert schedule.status == "active"
    assert schedule.execution_status == "pending"
    assert schedule.last_run_at is None


async def test_future_and_inactive_schedules_ignored(
    recovery: MissedScheduleRecovery, store: ScheduleStore
) -> None:
    await store.add_task(make_schedule("future", next_run_at="2026-02-05T14:00:00.000Z"))
    past = "2026-02-01T00:00:00.000Z"
    await store.add_task(make_schedule("paused", status="paused", next_run_at=past))
    await store.add_task(make_schedule("off", enabled=False, next_run_at=past))
    await store.add_task(make_schedule("unscheduled"))

    assert await recovery.handle_missed_schedules(NOW) == []
    assert (await store.get_scheduled_task("future")).next_run_at == "2026-02-05T14:00:00.000Z"
    assert (await store.get_scheduled_task("paused")).next_run_at == "2026-02-01T00:00:00.000Z"


async def test_missed_recurring_with_invalid_cron_is_contained(
    recovery: MissedScheduleRecovery, store: ScheduleStore, listener: RecordingListener
) -> None:
    await store.add_task(
        make_schedule("bad", cron_expression="0 9 * *", next_run_at="2026-02-01T14:00:00.000Z")
    )

    await recovery.handle_missed_schedules(NOW)

    schedule = await store.get_scheduled_task("bad")
    assert schedule.enabled is False
    assert schedule.next_run_at is None
    assert schedule.execution_error == INVALID_CRON_ERROR
    assert listener.payloads(SCHEDULE_UPDATED) == [{"schedule_id": "bad"}]


# -- dismiss_missed_schedule ---------------------------------------------------


async def test_dismiss_missed_schedule(
    recovery: MissedScheduleRecovery, store: ScheduleStore, listener: RecordingListener
) -> None:
    await store.add_task(make_schedule("once", schedule_type="one-time"))
    await recovery.handle_missed_schedules(NOW)

    await recovery.dismiss_missed_schedule("once")

    schedule = await store.get_scheduled_task("once")
    assert schedule.status == "completed"
    assert schedule.execution_status == "failed"
    assert schedule.execution_error == DISMISSED_ERROR
    assert schedule.last_task_id is None
    assert not recovery.is_awaiting_decision("once")
    assert SCHEDULE_UPDATED in listener.names()


async def test_dismiss_unknown_schedule(recovery: MissedScheduleRecovery) -> None:
    with pytest.raises(ScheduleNotFoundError):
        await recovery.dismiss_missed_schedule("missing")


# -- Held until decided --------------------------------------------------------


async def test_tick_holds_missed_one_time_until_run_now(
    store: ScheduleStore,
    history: ExecutionHistoryStore,
    events: ScheduleEventBus,
    recovery: MissedScheduleRecovery,
) -> None:
    runtime = FakeRuntime()
    engine = SchedulerEngine(
        store=store, runtime=runtime, history=history, events=events, recovery=recovery
    )
    await store.add_task(make_schedule("once", schedule_type="one-time"))
    await recovery.handle_missed_schedules(NOW)

    assert await engine.tick(NOW) == 0
    assert runtime.started == []

    assert await engine.execute_schedule_now("once") is not None
    assert recovery.pending == frozenset()
    assert (await store.get_scheduled_task("once")).status == "completed"


# -- schedule_next -------------------------------------------------------------


async def test_schedule_next_sets_first_run(
    recovery: MissedScheduleRecovery, store: ScheduleStore
) -> None:
    schedule = make_schedule("daily")
    await store.add_task(schedule)

    next_run = await recovery.schedule_next(schedule)

    assert next_run is not None
    assert (await store.get_scheduled_task("daily")).next_run_at == next_run


async def test_schedule_next_leaves_existing_run(
    recovery: MissedScheduleRecovery, store: ScheduleStore
) -> None:
    schedule = make_schedule("daily", next_run_at="2030-01-01T14:00:00.000Z")
    await store.add_task(schedule)

    assert await recovery.schedule_next(schedule) == "2030-01-01T14:00:00.000Z"


async def test_schedule_next_ignores_one_time(
    recovery: MissedScheduleRecovery, store: ScheduleStore
) -> None:
    schedule = make_schedule("once", schedule_type="one-time")
    await store.add_task(schedule)
    assert await recovery.schedule_next(schedule) == "2026-02-01T09:00:00.000Z"


# -- reset_interrupted_executions ----------------------------------------------


async def test_reset_interrupted_executions(
    recovery: MissedScheduleRecovery, store: ScheduleStore
) -> None:
    await store.add_task(make_schedule("stuck", execution_status="running"))
    await store.add_task(make_schedule("idle"))

    assert await recovery.reset_interrupted_executions() == ["stuck"]

    stuck = await store.get_scheduled_task("stuck")
    assert stuck.execution_status == "failed"
    assert stuck.execution_error == "Interrupted by scheduler restart"
    assert (await store.get_scheduled_task("idle")).execution_status == "pending"
