"""Trigger construction from schedule definitions.

``build_trigger`` is a pure function producing an immutable ``TriggerSpec``;
``TriggerSpec.materialize`` turns it into an APScheduler trigger that skips
the instants excluded by the attached calendar.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, tzinfo

from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger

from cronwire.core.scheduler.calendars import BaseCalendar
from cronwire.core.scheduler.cron import YEAR_TO_GIVEUP_SCHEDULING_AT, CronExpression
from cronwire.core.scheduler.errors import UnknownCalendar
from cronwire.core.scheduler.models import ScheduleDefinition


def trigger_id_for(name: str) -> str:
    return f"{name}_Trigger"


def job_id_for(name: str) -> str:
    return f"{name}_Job"


@dataclass(frozen=True)
class TriggerSpec:
    """Immutable description of the trigger for one bound job.

    Attributes:
        trigger_id: Trigger identity derived from the job name.
        job_id: Job identity derived from the job name.
        schedule_name: Name of the schedule the trigger was built from.
        expression: Cron rule.
        timezone: Zone the cron rule is evaluated in.
        description: Schedule description.
        start_at: Earliest fire time, None to start now.
        calendar: Name of the exclusion calendar, if any.
    """

    trigger_id: str
    job_id: str
    schedule_name: str
    expression: CronExpression
    timezone: tzinfo
    description: str | None = None
    start_at: datetime | None = None
    calendar: str | None = None

    @property
    def starts_now(self) -> bool:
        return self.start_at is None

    def materialize(self, calendars: Mapping[str, BaseCalendar]) -> CalendarCronTrigger:
        """Build the APScheduler trigger for this description.

        Args:
            calendars: Registered calendars by name.

        Returns:
            Calendar-aware cron trigger.

        Raises:
            UnknownCalendar: If the referenced calendar is not registered.
        """
        calendar = None
        if self.calendar is not None:
            calendar = calendars.get(self.calendar)
            if calendar is None:
                raise UnknownCalendar(self.calendar, self.schedule_name)
        cron = self.expression.to_trigger(self.timezone, start_date=self.start_at)
        return CalendarCronTrigger(cron, calendar)


def build_trigger(
    schedule: ScheduleDefinition, name: str, start_at: datetime | None = None
) -> TriggerSpec:
    """Describe the trigger for a job bound to ``schedule``.

    Args:
        schedule: Schedule definition to build from.
        name: Job name the trigger identity is derived from.
        start_at: Optional earliest fire time. Naive values are read in the
            schedule's time zone.

    Returns:
        TriggerSpec instance.
    """
    if start_at is not None and start_at.tzinfo is None:
        start_at = start_at.replace(tzinfo=schedule.timezone)
    return TriggerSpec(
        trigger_id=trigger_id_for(name),
        job_id=job_id_for(name),
        schedule_name=schedule.name,
        expression=schedule.expression,
        timezone=schedule.timezone,
        description=schedule.description,
        start_at=start_at,
        calendar=schedule.calendar,
    )


class CalendarCronTrigger(BaseTrigger):
    """Cron trigger whose fire times skip instants excluded by a calendar."""

    def __init__(self, cron: CronTrigger, calendar: BaseCalendar | None = None):
        self.cron = cron
        self.calendar = calendar

    def get_next_fire_time(
        self, previous_fire_time: datetime | None, now: datetime
    ) -> datetime | None:
        fire_time = self.cron.get_next_fire_time(previous_fire_time, now)
        if self.calendar is None:
            return fire_time

        while fire_time is not None and not self.calendar.is_time_included(fire_time):
            if fire_time.year > YEAR_TO_GIVEUP_SCHEDULING_AT:
                return None
            resume_at = self.calendar.next_included_time(fire_time)
            if resume_at is None:
                return None
            fire_time = self.cron.get_next_fire_time(None, resume_at)
        return fire_time

    def __str__(self) -> str:
        if self.calendar is None:
            return str(self.cron)
        return f"{self.cron} excluding calendar '{self.calendar.name}'"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} ({self.cron!r}, calendar={self.calendar!r})>"
