"""Exceptions raised by the scheduler engine.

Configuration-time errors (cron expressions, schedule and calendar entries)
are raised synchronously to the caller. Runtime delivery errors are wrapped
in JobExecutionFailed and reported to the firing executor.
"""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for all scheduler errors."""


class InvalidExpression(SchedulerError, ValueError):
    """Raised when a cron expression is missing or malformed."""

    def __init__(self, message: str, expression: str | None = None):
        super().__init__(message)
        self.expression = expression


class InvalidScheduleConfig(SchedulerError, ValueError):
    """Raised when a schedule entry is invalid for reasons other than its expression."""

    def __init__(self, message: str, schedule_name: str, field: str):
        super().__init__(message)
        self.schedule_name = schedule_name
        self.field = field


class DuplicateName(SchedulerError, ValueError):
    """Raised when creating a schedule whose name is already registered."""

    def __init__(self, name: str):
        super().__init__(f"A schedule with this name already exists: [{name}]")
        self.name = name


class UnknownSchedule(SchedulerError, LookupError):
    """Raised when operating on a schedule name that is not registered."""

    def __init__(self, name: str):
        super().__init__(f"No matching configuration found for schedule '{name}'")
        self.name = name


class UnknownCalendarType(SchedulerError, ValueError):
    """Raised when a calendar entry has a missing or unsupported type tag."""

    def __init__(self, message: str, calendar_name: str):
        super().__init__(message)
        self.calendar_name = calendar_name


class InvalidCalendarConfig(SchedulerError, ValueError):
    """Raised when a calendar entry has a missing or invalid field."""

    def __init__(self, message: str, calendar_name: str, field: str):
        super().__init__(message)
        self.calendar_name = calendar_name
        self.field = field


class UnknownCalendar(SchedulerError, LookupError):
    """Raised when a trigger references a calendar that is not registered."""

    def __init__(self, calendar_name: str, schedule_name: str):
        super().__init__(
            f"Calendar '{calendar_name}' referenced by schedule '{schedule_name}' "
            "is not registered"
        )
        self.calendar_name = calendar_name
        self.schedule_name = schedule_name


class TriggerNeverFires(SchedulerError, ValueError):
    """Raised when a trigger has no fire time at or after its start."""

    def __init__(self, name: str):
        super().__init__(
            f"Based on configured schedule, the trigger for '{name}' will never fire"
        )
        self.name = name


class SchedulerShutdown(SchedulerError, RuntimeError):
    """Raised when an operation needs an engine that has been shut down."""


class JobExecutionFailed(SchedulerError):
    """Uniform failure signal for a job execution that raised.

    The original exception is available as ``cause`` and ``__cause__``.
    """

    def __init__(self, job_name: str, cause: BaseException | None = None):
        detail = f" : {cause}" if cause is not None else ""
        super().__init__(f"ERROR executing Job {job_name}{detail}")
        self.job_name = job_name
        self.cause = cause
