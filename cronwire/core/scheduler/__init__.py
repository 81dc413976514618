# cronwire/core/scheduler/__init__.py
"""Scheduler module for named cron schedules.

Provides:
- Quartz-style cron expressions on top of APScheduler triggers
- Exclusion calendars (annual, holiday, daily, weekly, monthly, cron)
- An in-memory engine binding schedules to message receivers
- Fire-time enrichment of messages at delivery
"""

from cronwire.core.scheduler.calendars import (
    AnnualCalendar,
    BaseCalendar,
    Calendar,
    CalendarType,
    CronCalendar,
    DailyCalendar,
    HolidayCalendar,
    MonthlyCalendar,
    WeeklyCalendar,
    parse_calendar,
)
from cronwire.core.scheduler.cron import CronExpression, validate_expression
from cronwire.core.scheduler.engine import SchedulerEngine
from cronwire.core.scheduler.errors import (
    DuplicateName,
    InvalidCalendarConfig,
    InvalidExpression,
    InvalidScheduleConfig,
    JobExecutionFailed,
    SchedulerError,
    SchedulerShutdown,
    TriggerNeverFires,
    UnknownCalendar,
    UnknownCalendarType,
    UnknownSchedule,
)
from cronwire.core.scheduler.models import (
    JobState,
    RequiresFireTime,
    RunningJob,
    ScheduleDefinition,
    WithFireTime,
)
from cronwire.core.scheduler.receivers import (
    BroadcastStream,
    CallbackReceiver,
    QueueReceiver,
    Receiver,
    ReceiverDirectory,
    ReceiverSelection,
)
from cronwire.core.scheduler.triggers import TriggerSpec, build_trigger

__all__ = [
    "AnnualCalendar",
    "BaseCalendar",
    "BroadcastStream",
    "Calendar",
    "CalendarType",
    "CallbackReceiver",
    "CronCalendar",
    "CronExpression",
    "DailyCalendar",
    "DuplicateName",
    "HolidayCalendar",
    "InvalidCalendarConfig",
    "InvalidExpression",
    "InvalidScheduleConfig",
    "JobExecutionFailed",
    "JobState",
    "MonthlyCalendar",
    "QueueReceiver",
    "Receiver",
    "ReceiverDirectory",
    "ReceiverSelection",
    "RequiresFireTime",
    "RunningJob",
    "ScheduleDefinition",
    "SchedulerEngine",
    "SchedulerError",
    "SchedulerShutdown",
    "TriggerNeverFires",
    "TriggerSpec",
    "UnknownCalendar",
    "UnknownCalendarType",
    "UnknownSchedule",
    "WeeklyCalendar",
    "WithFireTime",
    "build_trigger",
    "parse_calendar",
    "validate_expression",
]
