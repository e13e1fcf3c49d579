"""Errors reported back to whoever triggered a scheduler operation."""


class ScheduleError(ValueError):
    """Base class for scheduler errors the caller is expected to handle."""


class ScheduleValidationError(ScheduleError):
    pass


class ScheduleNotFoundError(ScheduleError):
    def __init__(self, schedule_id: str) -> None:
        super().__init__(f"Schedule {schedule_id} not found")
        self.schedule_id = schedule_id


class ScheduleNotActiveError(ScheduleError):
    def __init__(self, schedule_id: str, status: str) -> None:
        super().__init__(f"Schedule {schedule_id} is not active (status={status})")
        self.schedule_id = schedule_id
        self.status = status


class ScheduleAlreadyRunningError(ScheduleError):
    def __init__(self, schedule_id: str) -> None:
        super().__init__(f"Schedule {schedule_id} is already running")
        self.schedule_id = schedule_id
