"""Input validation for creating and updating schedules."""

from __future__ import annotations

import re
import zoneinfo
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from src.config import settings
from src.scheduler.cron import CRON_FIELD_COUNT, is_valid_cron
from src.scheduler.errors import ScheduleValidationError
from src.scheduler.models import ScheduledTask, parse_iso, to_iso

MAX_PROMPT_LENGTH = 8000


def _is_valid_timezone(timezone: str) -> bool:
    try:
        zoneinfo.ZoneInfo(timezone)
    except (ValueError, KeyError, OSError):
        return False
    return True


def normalize_cron_expression(expression: str) -> str:
    return re.sub(r"\s+", " ", expression.strip())


def normalize_iso_datetime(value: str) -> str:
    try:
        return to_iso(parse_iso(value))
    except ValueError:
        msg = f"Invalid datetime: {value!r}"
        raise ValueError(msg) from None


def _check_timezone(value: str) -> str:
    value = value.strip()
    if not value:
        msg = "Timezone is required"
        raise ValueError(msg)
    if not _is_valid_timezone(value):
        msg = 'Invalid timezone. Must be a valid IANA timezone (e.g., "America/New_York").'
        raise ValueError(msg)
    return value


def _check_cron(value: str) -> str:
    value = normalize_cron_expression(value)
    if len(value.split(" ")) != CRON_FIELD_COUNT:
        msg = "Invalid cron expression. Must be 5 space-separated fields."
        raise ValueError(msg)
    return value


class CreateScheduleConfig(BaseModel):
    """Validated configuration for a new schedule."""

    prompt: str = Field(min_length=1, max_length=MAX_PROMPT_LENGTH)
    schedule_type: Literal["one-time", "recurring"]
    scheduled_at: str | None = None
    cron_expression: str | None = None
    timezone: str = Field(default_factory=lambda: settings.scheduler_timezone)

    @field_validator("prompt", mode="before")
    @classmethod
    def _strip_prompt(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("scheduled_at")
    @classmethod
    def _normalize_scheduled_at(cls, value: str | None) -> str | None:
        return normalize_iso_datetime(value) if value is not None else None

    @field_validator("cron_expression")
    @classmethod
    def _normalize_cron(cls, value: str | None) -> str | None:
        return _check_cron(value) if value is not None else None

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        return _check_timezone(value)

    @model_validator(mode="after")
    def _check_schedule_fields(self) -> CreateScheduleConfig:
        if self.schedule_type == "one-time":
            if not self.scheduled_at:
                msg = "One-time schedules require scheduled_at"
                raise ValueError(msg)
            return self

        if not self.cron_expression:
            msg = "Recurring schedules require cron_expression"
            raise ValueError(msg)
        if not is_valid_cron(self.cron_expression, self.timezone):
            msg = "Invalid cron expression for the selected timezone"
            raise ValueError(msg)
        return self


class UpdateScheduleConfig(BaseModel):
    """Partial update of a schedule. Unset fields are left alone."""

    prompt: str | None = Field(default=None, min_length=1, max_length=MAX_PROMPT_LENGTH)
    schedule_type: Literal["one-time", "recurring"] | None = None
    scheduled_at: str | None = None
    cron_expression: str | None = None
    timezone: str | None = None
    status: Literal["active", "paused", "completed", "cancelled"] | None = None
    enabled: bool | None = None

    @field_validator("prompt", mode="before")
    @classmethod
    def _strip_prompt(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("scheduled_at")
    @classmethod
    def _normalize_scheduled_at(cls, value: str | None) -> str | None:
        return normalize_iso_datetime(value) if value is not None else None

    @field_validator("cron_expression")
    @classmethod
    def _normalize_cron(cls, value: str | None) -> str | None:
        return _check_cron(value) if value is not None else None

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str | None) -> str | None:
        return _check_timezone(value) if value is not None else None

    def changes(self) -> dict[str, object]:
        """Return only the fields that were actually provided."""
        return self.model_dump(exclude_none=True)


def _format_errors(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        # pydantic prefixes errors raised from validators with "Value error, "
        message = str(error.get("msg", "")).removeprefix("Value error, ")
        location = ".".join(str(part) for part in error.get("loc", ()))
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages)


def validate_create_schedule(config: dict) -> CreateScheduleConfig:
    """Validate raw create input. Raises ScheduleValidationError."""
    try:
        return CreateScheduleConfig.model_validate(config)
    except ValidationError as exc:
        msg = f"Invalid schedule config: {_format_errors(exc)}"
        raise ScheduleValidationError(msg) from exc


def validate_update_schedule(existing: ScheduledTask, updates: dict) -> UpdateScheduleConfig:
    """Validate raw update input and the schedule it would produce.

    The merged result must satisfy the same rules as a newly created
    schedule, so an update can never leave a one-time schedule without a
    time or a recurring one without a usable cron.
    """
    try:
        parsed = UpdateScheduleConfig.model_validate(updates)
    except ValidationError as exc:
        msg = f"Invalid schedule updates: {_format_errors(exc)}"
        raise ScheduleValidationError(msg) from exc

    merged = {
        "prompt": parsed.prompt if parsed.prompt is not None else existing.prompt,
        "schedule_type": parsed.schedule_type or existing.schedule_type,
        "scheduled_at": parsed.scheduled_at or existing.scheduled_at,
        "cron_expression": parsed.cron_expression or existing.cron_expression,
        "timezone": parsed.timezone or existing.timezone,
    }
    try:
        CreateScheduleConfig.model_validate(merged)
    except ValidationError as exc:
        msg = f"Invalid schedule updates: {_format_errors(exc)}"
        raise ScheduleValidationError(msg) from exc
    return parsed
