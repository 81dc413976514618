"""Named cron schedules delivering messages to receivers."""

from cronwire.config import Settings
from cronwire.core.scheduler import (
    RequiresFireTime,
    SchedulerEngine,
    WithFireTime,
)

__version__ = "0.1.0"

__all__ = [
    "RequiresFireTime",
    "SchedulerEngine",
    "Settings",
    "WithFireTime",
]
