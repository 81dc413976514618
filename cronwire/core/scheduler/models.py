# cronwire/core/scheduler/models.py
"""Data models for the scheduler module."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, tzinfo
from enum import Enum
from typing import TYPE_CHECKING, Any

from cronwire.core.scheduler.cron import CronExpression

if TYPE_CHECKING:
    from cronwire.core.scheduler.triggers import TriggerSpec


@dataclass(frozen=True)
class ScheduleDefinition:
    """A named cron rule, independent of any receiver.

    Attributes:
        name: Unique schedule name.
        expression: Validated cron expression.
        timezone: Zone the expression is evaluated in.
        description: Optional description of the schedule.
        calendar: Optional name of the exclusion calendar to apply.
    """

    name: str
    expression: CronExpression
    timezone: tzinfo
    description: str | None = None
    calendar: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for display and logging.

        Returns:
            Dictionary representation of the schedule.
        """
        return {
            "name": self.name,
            "expression": str(self.expression),
            "timezone": str(self.timezone),
            "description": self.description,
            "calendar": self.calendar,
        }


@dataclass(frozen=True)
class RunningJob:
    """Live binding of a schedule to a receiver and message.

    Attributes:
        name: Schedule name the job runs under.
        job_id: Key of the job in the firing scheduler.
        receiver: Receiver the message is delivered to.
        message: Message delivered at each firing.
        trigger: Trigger description the job was armed with.
        start_at: Earliest fire time requested, None for "start now".
    """

    name: str
    job_id: str
    receiver: Any
    message: Any
    trigger: TriggerSpec
    start_at: datetime | None = None


class JobState(str, Enum):
    """Lifecycle state of a named job."""

    UNDEFINED = "undefined"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    SUSPENDED = "suspended"


@dataclass(frozen=True)
class RequiresFireTime:
    """Message wrapper asking for the fire times to be attached at dispatch."""

    payload: Any


@dataclass(frozen=True)
class WithFireTime:
    """Message enriched with the fire times of the firing that delivered it.

    Attributes:
        payload: The wrapped message.
        scheduled_fire_time: When this firing was scheduled.
        previous_fire_time: Scheduled time of the previous firing, if any.
        next_fire_time: Next scheduled firing, if any.
    """

    payload: Any
    scheduled_fire_time: datetime
    previous_fire_time: datetime | None = None
    next_fire_time: datetime | None = None
