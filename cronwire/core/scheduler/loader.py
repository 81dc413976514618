"""Build schedule and calendar registries from configuration.

Schedule entries::

    {"expression": "0 0 12 ? * MON-FRI", "timezone": "Europe/Berlin",
     "description": "Noon on weekdays", "calendar": "holidays"}

Every job "starts" immediately unless a start date is given when it is
scheduled.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import tzinfo
from typing import Any

from cronwire.core.scheduler.calendars import Calendar, parse_calendars
from cronwire.core.scheduler.cron import CronExpression, resolve_timezone
from cronwire.core.scheduler.errors import InvalidExpression, InvalidScheduleConfig
from cronwire.core.scheduler.models import ScheduleDefinition

logger = logging.getLogger(__name__)


def parse_schedule(
    name: str, config: Mapping[str, Any], default_timezone: tzinfo
) -> ScheduleDefinition:
    """Parse one declarative schedule entry.

    Args:
        name: Schedule name.
        config: The entry's fields.
        default_timezone: Zone used when the entry has no ``timezone``.

    Returns:
        ScheduleDefinition instance.

    Raises:
        InvalidExpression: If ``expression`` is missing or invalid.
        InvalidScheduleConfig: If another field is invalid.
    """
    if not isinstance(config, Mapping):
        raise InvalidScheduleConfig(
            f"Schedule {name} must be a mapping of settings", name, "expression"
        )

    raw = config.get("expression")
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidExpression(
            f"Invalid or Missing Configuration entry 'expression' for Cron Schedule "
            f"{name}. You must provide a valid cron expression.",
            raw,
        )
    try:
        expression = CronExpression.parse(raw)
    except InvalidExpression as e:
        raise InvalidExpression(
            f"Invalid 'expression' for Cron Schedule '{name}'. {e}", raw
        ) from e

    try:
        tz = resolve_timezone(config.get("timezone"), default_timezone)
    except ValueError as e:
        raise InvalidScheduleConfig(
            f"Invalid 'timezone' for schedule {name}: {e}", name, "timezone"
        ) from e

    calendar = config.get("calendar")
    if calendar is not None and not isinstance(calendar, str):
        raise InvalidScheduleConfig(
            f"Schedule {name} - 'calendar' must be the name of a calendar",
            name,
            "calendar",
        )

    return ScheduleDefinition(
        name=name,
        expression=expression,
        timezone=tz,
        description=config.get("description") or None,
        calendar=calendar,
    )


def load_schedules(
    entries: Mapping[str, Mapping[str, Any]], default_timezone: tzinfo
) -> dict[str, ScheduleDefinition]:
    """Parse a mapping of schedule name to entry."""
    schedules = {
        name: parse_schedule(name, entry, default_timezone)
        for name, entry in entries.items()
    }
    logger.debug("Configured schedules: %s", sorted(schedules))
    return schedules


def load_calendars(
    entries: Mapping[str, Mapping[str, Any]], default_timezone: tzinfo
) -> dict[str, Calendar]:
    """Parse a mapping of calendar name to entry."""
    calendars = parse_calendars(entries, default_timezone)
    logger.debug("Configured calendars: %s", sorted(calendars))
    return calendars
