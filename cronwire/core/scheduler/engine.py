# cronwire/core/scheduler/engine.py
"""APScheduler-backed engine for named cron schedules.

Owns the schedule registry, the calendar registry and the running-job
registry, and binds (name, receiver, message) to live APScheduler jobs.
Jobs are kept in memory only; schedules must be redeclared after a restart.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import STATE_PAUSED, STATE_RUNNING, STATE_STOPPED

from cronwire.config import Settings
from cronwire.core.scheduler.calendars import BaseCalendar, Calendar, parse_calendar
from cronwire.core.scheduler.cron import CronExpression, resolve_timezone
from cronwire.core.scheduler.errors import (
    DuplicateName,
    InvalidExpression,
    InvalidScheduleConfig,
    SchedulerShutdown,
    TriggerNeverFires,
    UnknownCalendar,
    UnknownSchedule,
)
from cronwire.core.scheduler.executor import FiringExecutor, MessageJob
from cronwire.core.scheduler.loader import load_calendars, load_schedules
from cronwire.core.scheduler.models import JobState, RunningJob, ScheduleDefinition
from cronwire.core.scheduler.receivers import as_receiver
from cronwire.core.scheduler.triggers import (
    CalendarCronTrigger,
    build_trigger,
    job_id_for,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _PreparedJob:
    running: RunningJob
    trigger: CalendarCronTrigger
    first_fire_time: datetime


class SchedulerEngine:
    """Named-schedule job engine.

    Manages scheduled jobs with:
    - A registry of immutable, named cron schedules
    - Exclusion calendars attached to schedules by name
    - A registry of running jobs bound to a receiver and a message
    - An in-memory APScheduler BackgroundScheduler doing the timed firing

    All registry mutations happen under one re-entrant lock, so no caller
    observes a partially built entry.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the engine from settings.

        Args:
            settings: Engine settings. Defaults to Settings() (environment).

        Raises:
            InvalidExpression: If a configured schedule has a bad expression.
            InvalidScheduleConfig: If a configured schedule is otherwise invalid.
            UnknownCalendarType: If a configured calendar has a bad type.
            InvalidCalendarConfig: If a configured calendar is invalid.
            UnknownCalendar: If a schedule references an undefined calendar.
        """
        self._settings = settings or Settings()
        self._default_timezone = self._settings.timezone
        self._name = self._settings.scheduler_name

        self._lock = threading.RLock()
        self._job_armed = threading.Condition(self._lock)

        self._calendars: dict[str, Calendar] = load_calendars(
            self._settings.calendars, self._default_timezone
        )
        self._schedules: dict[str, ScheduleDefinition] = load_schedules(
            self._settings.schedules, self._default_timezone
        )
        for schedule in self._schedules.values():
            if schedule.calendar is not None and schedule.calendar not in self._calendars:
                raise UnknownCalendar(schedule.calendar, schedule.name)

        self._running_jobs: dict[str, RunningJob] = {}
        # Written from the scheduler thread, so it never shares the engine lock
        self._failures_lock = threading.Lock()
        self._failed_executions: Counter[str] = Counter()
        self._all_suspended = False
        self._shutdown = False

        pool = self._settings.thread_pool
        self._scheduler = BackgroundScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={
                "default": FiringExecutor(
                    pool.thread_count, thread_name_prefix=f"{self._name}_worker"
                )
            },
            job_defaults={
                "coalesce": self._settings.coalesce,
                "max_instances": self._settings.max_instances,
                "misfire_grace_time": self._settings.misfire_grace_time,
            },
            timezone=self._default_timezone,
            daemon=pool.daemon_threads,
        )
        self._scheduler.add_listener(
            self._on_job_event,
            EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED,
        )

        logger.info(
            "SchedulerEngine '%s' initialized: %d schedules, %d calendars, %d threads",
            self._name,
            len(self._schedules),
            len(self._calendars),
            pool.thread_count,
        )

    # ------------------------------------------------------------------
    # Engine-wide controls
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Start firing triggers.

        Returns:
            True if the engine was started or resumed from standby,
            False if it was already running.

        Raises:
            SchedulerShutdown: If the engine has been shut down.
        """
        with self._lock:
            self._ensure_open()
            state = self._scheduler.state
            if state == STATE_RUNNING:
                logger.warning("Cannot start scheduler, already started.")
                return False
            if state == STATE_PAUSED:
                self._scheduler.resume()
            else:
                self._scheduler.start()
            logger.info("Scheduler '%s' started", self._name)
            return True

    def standby(self) -> None:
        """Temporarily halt all firing. Resumable by calling start()."""
        with self._lock:
            self._ensure_open()
            if self._scheduler.state == STATE_RUNNING:
                self._scheduler.pause()
                logger.info("Scheduler '%s' in standby", self._name)

    def shutdown(self, wait_for_jobs_to_complete: bool = False) -> None:
        """Shut the engine down. It cannot be restarted.

        Args:
            wait_for_jobs_to_complete: Block until in-flight executions finish.
        """
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
            self._job_armed.notify_all()
            scheduler_state = self._scheduler.state

        if scheduler_state != STATE_STOPPED:
            self._scheduler.shutdown(wait=wait_for_jobs_to_complete)
        logger.info("Scheduler '%s' shutdown", self._name)

    def suspend_all(self) -> None:
        """Pause every trigger; jobs scheduled later start paused until resume_all()."""
        with self._lock:
            self._ensure_open()
            self._all_suspended = True
            for name in list(self._running_jobs):
                self._pause_locked(name)
            logger.info("Suspending all jobs")

    def resume_all(self) -> None:
        """Resume every trigger, including individually suspended ones."""
        with self._lock:
            self._ensure_open()
            self._all_suspended = False
            for name in list(self._running_jobs):
                self._resume_locked(name)
            self._job_armed.notify_all()
            logger.info("Resuming all jobs")

    @property
    def is_started(self) -> bool:
        """Check if the engine has been started and not shut down."""
        return not self._shutdown and self._scheduler.state != STATE_STOPPED

    @property
    def is_in_standby_mode(self) -> bool:
        """Check if firing is halted (not yet started, or in standby)."""
        return not self._shutdown and self._scheduler.state != STATE_RUNNING

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def default_timezone(self) -> tzinfo:
        return self._default_timezone

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    def create_schedule(
        self,
        name: str,
        description: str | None,
        cron_expression: str,
        calendar: str | None = None,
        timezone: str | tzinfo | None = None,
    ) -> ScheduleDefinition:
        """Create a schedule. It must still be bound by calling schedule().

        Args:
            name: Unique schedule name.
            description: What the schedule is for.
            cron_expression: Quartz-style cron expression.
            calendar: Optional exclusion calendar name.
            timezone: Zone for the expression. Defaults to the engine default.

        Returns:
            The created ScheduleDefinition.

        Raises:
            InvalidExpression: If the cron expression is malformed.
            InvalidScheduleConfig: If the time zone is unknown.
            DuplicateName: If a schedule with this name exists.
        """
        definition = self._new_definition(
            name, description, cron_expression, calendar, timezone
        )
        with self._lock:
            if name in self._schedules:
                raise DuplicateName(name)
            self._schedules[name] = definition
        logger.info("Schedule created: %s (%s)", name, definition.expression)
        return definition

    def get_schedule(self, name: str) -> ScheduleDefinition | None:
        with self._lock:
            return self._schedules.get(name)

    def schedule_names(self) -> list[str]:
        with self._lock:
            return sorted(self._schedules)

    # ------------------------------------------------------------------
    # Calendars
    # ------------------------------------------------------------------

    def add_calendar(
        self,
        name: str,
        calendar: BaseCalendar | Mapping[str, Any],
        replace: bool = False,
    ) -> Calendar:
        """Register an exclusion calendar.

        Args:
            name: Calendar name schedules refer to.
            calendar: A calendar instance or a declarative calendar entry.
            replace: Replace an existing calendar with the same name.

        Returns:
            The registered calendar.

        Raises:
            ValueError: If the name is taken and replace is False.
            UnknownCalendarType: If a declarative entry has a bad type.
            InvalidCalendarConfig: If a declarative entry is invalid.
        """
        if not isinstance(calendar, BaseCalendar):
            calendar = parse_calendar(name, calendar, self._default_timezone)
        with self._lock:
            if name in self._calendars and not replace:
                raise ValueError(f"A calendar with this name already exists: [{name}]")
            self._calendars[name] = calendar
        logger.info("Calendar registered: %s (%s)", name, calendar.calendar_type.value)
        return calendar

    def get_calendar(self, name: str) -> Calendar | None:
        with self._lock:
            return self._calendars.get(name)

    def calendar_names(self) -> list[str]:
        with self._lock:
            return sorted(self._calendars)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def schedule(
        self,
        name: str,
        receiver: Any,
        message: Any,
        start_at: datetime | None = None,
    ) -> datetime:
        """Bind a receiver and message to a named schedule.

        Re-scheduling a name that already has a running job replaces it.

        Args:
            name: Name of a registered schedule.
            receiver: Receiver, BroadcastStream, queue or callable.
            message: Message delivered at each firing.
            start_at: Optional earliest fire time.

        Returns:
            The first fire time.

        Raises:
            UnknownSchedule: If no schedule has this name.
            UnknownCalendar: If the schedule's calendar is not registered.
            TriggerNeverFires: If the trigger has no future fire time.
            TypeError: If the receiver cannot accept messages.
        """
        with self._lock:
            self._ensure_open()
            definition = self._schedules.get(name)
            if definition is None:
                raise UnknownSchedule(name)
            prepared = self._prepare(definition, name, receiver, message, start_at)
            self._commit(prepared)
        return prepared.first_fire_time

    def create_job_schedule(
        self,
        name: str,
        receiver: Any,
        message: Any,
        description: str | None,
        cron_expression: str,
        calendar: str | None = None,
        timezone: str | tzinfo | None = None,
    ) -> datetime:
        """Create a schedule and bind it to a receiver at once.

        Returns:
            The first fire time.
        """
        with self._lock:
            self.create_schedule(name, description, cron_expression, calendar, timezone)
            return self.schedule(name, receiver, message)

    def reschedule_job(
        self,
        name: str,
        receiver: Any,
        message: Any,
        description: str | None,
        cron_expression: str,
        calendar: str | None = None,
        timezone: str | tzinfo | None = None,
    ) -> datetime:
        """Replace the schedule and running job for a name.

        The new schedule is validated before anything is torn down, and the
        whole sequence runs under the engine lock, so ``name`` always has a
        schedule registered to outside observers.

        Returns:
            The first fire time of the new trigger.
        """
        definition = self._new_definition(
            name, description, cron_expression, calendar, timezone
        )
        with self._lock:
            self._ensure_open()
            prepared = self._prepare(definition, name, receiver, message, None)
            replaced = name in self._running_jobs
            self._schedules[name] = definition
            self._reset_failures(prepared.running.job_id)
            self._commit(prepared)
        logger.info(
            "Job %s rescheduled (%s), replaced running job: %s",
            name,
            definition.expression,
            replaced,
        )
        return prepared.first_fire_time

    def update_job_schedule(
        self,
        name: str,
        receiver: Any,
        message: Any,
        description: str | None,
        cron_expression: str,
        calendar: str | None = None,
        timezone: str | tzinfo | None = None,
    ) -> datetime:
        """Same as reschedule_job()."""
        return self.reschedule_job(
            name, receiver, message, description, cron_expression, calendar, timezone
        )

    def cancel_job(self, name: str) -> bool:
        """Stop a running job. The schedule definition is kept.

        Returns:
            True if a running job was cancelled.
        """
        with self._lock:
            running = self._running_jobs.pop(name, None)
            if running is None:
                logger.warning("No running Job named '%s' found: Cannot cancel", name)
                return False
            self._reset_failures(running.job_id)
            try:
                self._scheduler.remove_job(running.job_id)
            except JobLookupError:
                logger.warning("Job %s was already gone from the scheduler", name)
                return False
        logger.info("Job cancelled: %s", name)
        return True

    def unschedule_job(self, name: str) -> bool:
        """Cancel a running job and remove its schedule.

        Returns:
            True if a running job was cancelled. The schedule is only removed
            in that case.
        """
        with self._lock:
            cancelled = self.cancel_job(name)
            if cancelled:
                self._schedules.pop(name, None)
        return cancelled

    def delete_job_schedule(self, name: str) -> bool:
        """Same as unschedule_job()."""
        return self.unschedule_job(name)

    def suspend_job(self, name: str) -> bool:
        """Pause one job's trigger without deleting it.

        Returns:
            True if the job exists.
        """
        with self._lock:
            if self._live_job_locked(name) is None:
                logger.warning("No running Job named '%s' found: Cannot suspend", name)
                return False
            if not self._pause_locked(name):
                return False
        logger.info("Suspending job %s", name)
        return True

    def resume_job(self, name: str) -> bool:
        """Resume a suspended job on its original cron grid.

        Returns:
            True if the job exists.
        """
        with self._lock:
            if self._live_job_locked(name) is None:
                logger.warning("No running Job named '%s' found: Cannot resume", name)
                return False
            resumed = self._resume_locked(name)
            self._job_armed.notify_all()
        if resumed:
            logger.info("Resuming job %s", name)
        return resumed

    def next_trigger(self, name: str, timeout: float = 10.0) -> datetime:
        """Wait until a job is armed and return its next fire time.

        Args:
            name: Job name.
            timeout: Maximum number of seconds to wait.

        Returns:
            The job's next fire time.

        Raises:
            TimeoutError: If no fire time became available in time.
            SchedulerShutdown: If the engine shuts down while waiting.
        """
        deadline = time.monotonic() + timeout
        with self._job_armed:
            while True:
                if self._shutdown:
                    raise SchedulerShutdown(
                        f"Scheduler '{self._name}' shut down while waiting for '{name}'"
                    )
                fire_time = self._next_fire_time_locked(name)
                if fire_time is not None:
                    return fire_time
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(f"No trigger armed for job '{name}' after {timeout}s")
                self._job_armed.wait(remaining)

    def job_state(self, name: str) -> JobState:
        """Get the lifecycle state of a name."""
        with self._lock:
            if self._live_job_locked(name) is not None:
                if self._next_fire_time_locked(name) is None:
                    return JobState.SUSPENDED
                return JobState.RUNNING
            if name in self._schedules:
                return JobState.SCHEDULED
            return JobState.UNDEFINED

    def get_running_job(self, name: str) -> RunningJob | None:
        with self._lock:
            return self._live_job_locked(name)

    def running_job_names(self) -> list[str]:
        with self._lock:
            return sorted(
                name for name in list(self._running_jobs)
                if self._live_job_locked(name) is not None
            )

    def failed_executions(self, name: str) -> int:
        """Get how many firings of the current job for a name have failed."""
        with self._failures_lock:
            return self._failed_executions[job_id_for(name)]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._shutdown:
            raise SchedulerShutdown(f"Scheduler '{self._name}' has been shut down")

    def _new_definition(
        self,
        name: str,
        description: str | None,
        cron_expression: str,
        calendar: str | None,
        timezone: str | tzinfo | None,
    ) -> ScheduleDefinition:
        try:
            expression = CronExpression.parse(cron_expression)
        except InvalidExpression as e:
            raise InvalidExpression(
                f"Invalid 'expression' for Cron Schedule '{name}'. {e}",
                cron_expression,
            ) from e
        try:
            tz = resolve_timezone(timezone, self._default_timezone)
        except ValueError as e:
            raise InvalidScheduleConfig(
                f"Invalid 'timezone' for schedule {name}: {e}", name, "timezone"
            ) from e
        return ScheduleDefinition(
            name=name,
            expression=expression,
            timezone=tz,
            description=description,
            calendar=calendar,
        )

    def _prepare(
        self,
        definition: ScheduleDefinition,
        name: str,
        receiver: Any,
        message: Any,
        start_at: datetime | None,
    ) -> _PreparedJob:
        trigger_spec = build_trigger(definition, name, start_at)
        trigger = trigger_spec.materialize(self._calendars)
        first_fire_time = trigger.get_next_fire_time(
            None, datetime.now(definition.timezone)
        )
        if first_fire_time is None:
            raise TriggerNeverFires(name)
        running = RunningJob(
            name=name,
            job_id=trigger_spec.job_id,
            receiver=as_receiver(receiver),
            message=message,
            trigger=trigger_spec,
            start_at=trigger_spec.start_at,
        )
        return _PreparedJob(running, trigger, first_fire_time)

    def _commit(self, prepared: _PreparedJob) -> None:
        running = prepared.running
        if (
            self._scheduler.state == STATE_STOPPED
            and self._scheduler.get_job(running.job_id) is not None
        ):
            # Pending jobs are not replaced in place before the first start
            self._scheduler.remove_job(running.job_id)

        self._scheduler.add_job(
            MessageJob(running.name, running.receiver, running.message),
            trigger=prepared.trigger,
            id=running.job_id,
            name=running.name,
            next_run_time=None if self._all_suspended else prepared.first_fire_time,
            replace_existing=True,
        )
        self._running_jobs[running.name] = running
        self._job_armed.notify_all()
        logger.info(
            "Job scheduled: name=%s, first_fire=%s, paused=%s",
            running.name,
            prepared.first_fire_time.isoformat(),
            self._all_suspended,
        )

    def _live_job_locked(self, name: str) -> RunningJob | None:
        """Get the running job for a name unless the scheduler has removed it."""
        running = self._running_jobs.get(name)
        if running is None or self._shutdown:
            return running
        if self._scheduler.get_job(running.job_id) is None:
            self._drop_finished_locked(name)
            return None
        return running

    def _drop_finished_locked(self, name: str) -> None:
        # The trigger ran out of fire times and the scheduler removed the job
        if self._running_jobs.pop(name, None) is not None:
            logger.warning("Job %s has no remaining fire time and was removed", name)

    def _pause_locked(self, name: str) -> bool:
        running = self._running_jobs[name]
        try:
            self._scheduler.pause_job(running.job_id)
        except JobLookupError:
            self._drop_finished_locked(name)
            return False
        return True

    def _resume_locked(self, name: str) -> bool:
        running = self._running_jobs[name]
        try:
            self._scheduler.resume_job(running.job_id)
        except JobLookupError:
            self._drop_finished_locked(name)
            return False
        if self._scheduler.get_job(running.job_id) is None:
            self._drop_finished_locked(name)
            return False
        return True

    def _reset_failures(self, job_id: str) -> None:
        with self._failures_lock:
            self._failed_executions.pop(job_id, None)

    def _next_fire_time_locked(self, name: str) -> datetime | None:
        running = self._running_jobs.get(name)
        if running is None:
            return None
        job = self._scheduler.get_job(running.job_id)
        if job is None:
            return None
        return job.next_run_time

    def _on_job_event(self, event: JobExecutionEvent) -> None:
        """Log job execution events.

        Failed executions stay scheduled; there is no refire. This can run on
        the scheduler thread while it holds its job store lock, so only the
        failure counter lock is taken here.
        """
        if event.code == EVENT_JOB_MISSED:
            logger.warning(
                "Job %s missed its run time %s", event.job_id, event.scheduled_run_time
            )
        elif event.exception:
            with self._failures_lock:
                self._failed_executions[event.job_id] += 1
            logger.error("Job %s failed: %s", event.job_id, str(event.exception))
        else:
            logger.debug("Job %s completed successfully", event.job_id)
