# cronwire/core/scheduler/executor.py
"""Executor for scheduled message jobs.

Delivers a job's message to its receiver at each firing. The thread-pool
executor hands every firing its scheduled, previous and next fire times so
that ``RequiresFireTime`` messages can be enriched before delivery.
"""

from __future__ import annotations

import logging
import threading
import traceback
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.executors.pool import ThreadPoolExecutor

from cronwire.core.scheduler.errors import JobExecutionFailed
from cronwire.core.scheduler.models import RequiresFireTime, WithFireTime
from cronwire.core.scheduler.receivers import BroadcastStream, Receiver
from cronwire.utils.logging import reset_job_name, set_job_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FireContext:
    """Execution-time information about one firing.

    Attributes:
        job_name: Name of the job being fired.
        scheduled_fire_time: When this firing was scheduled.
        previous_fire_time: Scheduled time of the previous firing, if any.
        next_fire_time: Next scheduled firing, if any.
    """

    job_name: str
    scheduled_fire_time: datetime
    previous_fire_time: datetime | None = None
    next_fire_time: datetime | None = None


def deliver(receiver: Any, message: Any) -> None:
    """Deliver a message fire-and-forget according to the receiver variant.

    Args:
        receiver: A BroadcastStream or a Receiver (direct or selection).
        message: The message to deliver.

    Raises:
        TypeError: If the receiver is not a supported variant.
    """
    if isinstance(receiver, BroadcastStream):
        receiver.publish(message)
    elif isinstance(receiver, Receiver):
        receiver.tell(message)
    else:
        raise TypeError(
            "receiver is not of an expected type, must be a Receiver or "
            f"BroadcastStream, was {type(receiver).__name__}"
        )


class MessageJob:
    """Job callable sending one message to one receiver per firing.

    Tracks the scheduled time of its previous firing so each delivery can
    report it.
    """

    def __init__(self, name: str, receiver: Any, message: Any) -> None:
        self.name = name
        self.receiver = receiver
        self.message = message
        self._previous_fire_time: datetime | None = None
        self._lock = threading.Lock()

    def record_fire(self, scheduled_fire_time: datetime) -> datetime | None:
        """Record a firing and return the scheduled time of the one before it."""
        with self._lock:
            previous = self._previous_fire_time
            self._previous_fire_time = scheduled_fire_time
        return previous

    def __call__(self, context: FireContext | None = None) -> None:
        if context is None:
            now = datetime.now(timezone.utc)
            context = FireContext(self.name, now, self.record_fire(now))
        self.execute(context)

    def execute(self, context: FireContext) -> None:
        """Deliver the message for one firing.

        Args:
            context: Fire times of this firing.

        Raises:
            JobExecutionFailed: If resolving or delivering the message fails.
        """
        token = set_job_name(self.name)
        try:
            message = self.message
            if isinstance(message, RequiresFireTime):
                message = WithFireTime(
                    message.payload,
                    context.scheduled_fire_time,
                    context.previous_fire_time,
                    context.next_fire_time,
                )
            deliver(self.receiver, message)
        except JobExecutionFailed:
            raise
        except Exception as e:
            raise JobExecutionFailed(self.name, e) from e
        finally:
            reset_job_name(token)

    def __repr__(self) -> str:
        return f"MessageJob({self.name!r}, receiver={self.receiver!r})"


def run_message_job(
    job: Any, jobstore_alias: str, run_times: list[datetime], logger_name: str
) -> list[JobExecutionEvent]:
    """Run a job for each of its due run times.

    Mirrors APScheduler's ``run_job``, with MessageJob callables receiving a
    FireContext. Failures are returned as error events and never propagate.

    Args:
        job: The APScheduler job.
        jobstore_alias: Alias of the job store holding the job.
        run_times: Scheduled times to run the job for.
        logger_name: Name of the executor logger.

    Returns:
        One execution event per run time.
    """
    events = []
    run_logger = logging.getLogger(logger_name)
    for run_time in run_times:
        if job.misfire_grace_time is not None:
            difference = datetime.now(timezone.utc) - run_time
            if difference > timedelta(seconds=job.misfire_grace_time):
                events.append(
                    JobExecutionEvent(EVENT_JOB_MISSED, job.id, jobstore_alias, run_time)
                )
                run_logger.warning(
                    'Run time of job "%s" was missed by %s', job.id, difference
                )
                continue

        run_logger.debug('Running job "%s" (scheduled at %s)', job.id, run_time)
        try:
            if isinstance(job.func, MessageJob):
                context = FireContext(
                    job_name=job.func.name,
                    scheduled_fire_time=run_time,
                    previous_fire_time=job.func.record_fire(run_time),
                    next_fire_time=job.trigger.get_next_fire_time(run_time, run_time),
                )
                retval = job.func(context)
            else:
                retval = job.func(*job.args, **job.kwargs)
        except Exception as e:
            events.append(
                JobExecutionEvent(
                    EVENT_JOB_ERROR,
                    job.id,
                    jobstore_alias,
                    run_time,
                    exception=e,
                    traceback=traceback.format_exc(),
                )
            )
            run_logger.error('Job "%s" raised an exception: %s', job.id, e)
        else:
            events.append(
                JobExecutionEvent(
                    EVENT_JOB_EXECUTED, job.id, jobstore_alias, run_time, retval=retval
                )
            )
            run_logger.debug('Job "%s" executed successfully', job.id)
    return events


class FiringExecutor(ThreadPoolExecutor):
    """APScheduler thread-pool executor running jobs with run_message_job."""

    def __init__(self, max_workers: int = 10, thread_name_prefix: str = "cronwire") -> None:
        super().__init__(
            max_workers, pool_kwargs={"thread_name_prefix": thread_name_prefix}
        )

    def _do_submit_job(self, job: Any, run_times: list[datetime]) -> None:
        def callback(future: Any) -> None:
            exc = future.exception()
            if exc is not None:
                self._run_job_error(job.id, exc, exc.__traceback__)
            else:
                self._run_job_success(job.id, future.result())

        future = self._pool.submit(
            run_message_job, job, job._jobstore_alias, run_times, self._logger.name
        )
        future.add_done_callback(callback)
