"""Tests for Settings configuration model."""

from pathlib import Path

import pytest

from src.config import Settings


class TestDefaults:
    def test_default_database_path(self):
        s = Settings()
        assert s.database_path == Path("data/scheduler.db")

    def test_default_busy_timeout(self):
        s = Settings()
        assert s.database_busy_timeout_ms == 5000

    def test_default_check_interval(self):
        s = Settings()
        assert s.scheduler_check_interval_seconds == 60

    def test_default_scheduler_timezone(self):
        s = Settings()
        assert s.scheduler_timezone == "America/Chicago"

    def test_debug_mode_off_by_default(self):
        s = Settings()
        assert s.debug_mode is False

    def test_no_runtime_configured_by_default(self):
        s = Settings()
        assert s.execution_runtime == ""


class TestOverrides:
    def test_init_values_win(self):
        s = Settings(scheduler_check_interval_seconds=5, debug_mode=True)
        assert s.scheduler_check_interval_seconds == 5
        assert s.debug_mode is True

    def test_database_path_coerced_to_path(self):
        s = Settings(database_path="/tmp/other.db")
        assert s.database_path == Path("/tmp/other.db")


class TestExtraForbidden:
    def test_unknown_env_var_raises(self):
        with pytest.raises(ValueError, match="extra_forbidden"):
            Settings(**{"nonexistent_field": "value"})
