"""Tests for next-run calculation and invalid-cron containment."""

from datetime import UTC, datetime

import pytest

from src.scheduler.cron import (
    INVALID_CRON_ERROR,
    compute_next_run,
    disable_invalid_schedule,
    is_valid_cron,
)
from src.scheduler.store import ScheduleStore
from tests.fakes import make_schedule

NOW = "2026-02-04T12:00:00Z"  # a Wednesday; 07:00 in New York


# -- compute_next_run ----------------------------------------------------------


def test_daily_cron_in_new_york() -> None:
    assert compute_next_run("0 9 * * *", "America/New_York", NOW) == "2026-02-04T14:00:00.000Z"


def test_same_cron_differs_by_timezone() -> None:
    assert compute_next_run("0 9 * * *", "UTC", NOW) == "2026-02-05T09:00:00.000Z"
    assert compute_next_run("0 9 * * *", "Asia/Tokyo", NOW) == "2026-02-05T00:00:00.000Z"


def test_result_is_strictly_after_now() -> None:
    exact = "2026-02-04T14:00:00.000Z"
    assert compute_next_run("0 9 * * *", "America/New_York", exact) == "2026-02-05T14:00:00.000Z"


def test_accepts_datetime_now() -> None:
    now = datetime(2026, 2, 4, 12, 0, tzinfo=UTC)
    assert compute_next_run("30 * * * *", "UTC", now) == "2026-02-04T12:30:00.000Z"


def test_numeric_day_of_week_zero_is_sunday() -> None:
    assert compute_next_run("0 9 * * 0", "America/New_York", NOW) == "2026-02-08T14:00:00.000Z"
    assert compute_next_run("0 9 * * 1", "America/New_York", NOW) == "2026-02-09T14:00:00.000Z"


def test_wall_clock_kept_across_dst_change() -> None:
    # 2026-03-08 is the spring-forward date in New York.
    before = "2026-03-07T15:00:00Z"
    assert compute_next_run("0 9 * * *", "America/New_York", before) == "2026-03-08T13:00:00.000Z"


@pytest.mark.parametrize(
    "expression",
    ["not a cron", "0 9 * *", "0 9 * * * *", "61 9 * * *", ""],
)
def test_invalid_expression_returns_none(expression: str) -> None:
    assert compute_next_run(expression, "America/New_York", NOW) is None


def test_unknown_timezone_returns_none() -> None:
    assert compute_next_run("0 9 * * *", "Mars/Olympus_Mons", NOW) is None


def test_is_valid_cron() -> None:
    assert is_valid_cron("*/15 * * * *", "Europe/London")
    assert not is_valid_cron("every day", "Europe/London")


# -- disable_invalid_schedule --------------------------------------------------


async def test_disable_invalid_schedule(store: ScheduleStore) -> None:
    await store.add_task(make_schedule("s1", next_run_at="2026-02-04T14:00:00.000Z"))

    await disable_invalid_schedule(store, "s1")

    schedule = await store.get_scheduled_task("s1")
    assert schedule is not None
    assert schedule.enabled is False
    assert schedule.next_run_at is None
    assert schedule.execution_status == "failed"
    assert schedule.execution_error == INVALID_CRON_ERROR
    assert schedule.status == "active"
