"""Exclusion calendars that remove instants from a schedule's fire sequence.

Calendars are parsed from declarative entries::

    {"type": "WEEKLY", "timezone": "Europe/Berlin", "description": "...",
     "excludeDays": [4], "excludeWeekends": True}

Supported types:
- ANNUAL: ``excludeDates`` list of ``MM-DD``, excluded every year.
- HOLIDAY: ``excludeDates`` list of ``YYYY-MM-DD``, excluded once.
- DAILY: ``exclude`` block with ``startTime``/``endTime`` (``HH:MM[:SS[.mmm]]``).
  The window cannot cross midnight and both ends are excluded.
- WEEKLY: ``excludeDays`` of 1-7 (1 is Sunday), ``excludeWeekends`` (default
  true) adds Saturday and Sunday.
- MONTHLY: ``excludeDays`` of 1-31.
- CRON: ``excludeExpression``, instants matching it are excluded.

Every calendar is evaluated in its own time zone.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone as dt_timezone, tzinfo
from enum import Enum
from typing import Any

from cronwire.core.scheduler.cron import (
    YEAR_TO_GIVEUP_SCHEDULING_AT,
    CronExpression,
    resolve_timezone,
)
from cronwire.core.scheduler.errors import (
    InvalidCalendarConfig,
    InvalidExpression,
    UnknownCalendarType,
)

logger = logging.getLogger(__name__)

# Longest run of consecutive excluded days a day-based calendar can produce
MAX_EXCLUDED_DAYS = 366 * 4

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2})(?:[.:](\d{3}))?)?$")


class CalendarType(str, Enum):
    """Supported calendar kinds."""

    ANNUAL = "ANNUAL"
    HOLIDAY = "HOLIDAY"
    DAILY = "DAILY"
    MONTHLY = "MONTHLY"
    WEEKLY = "WEEKLY"
    CRON = "CRON"


@dataclass(frozen=True)
class BaseCalendar:
    """Common attributes and queries of every calendar.

    Attributes:
        name: Calendar name used by schedules to reference it.
        timezone: Zone the exclusion rules are evaluated in.
        description: Optional human readable description.
    """

    name: str
    timezone: tzinfo
    description: str = ""

    def is_time_included(self, when: datetime) -> bool:
        """Check whether an instant is allowed to fire."""
        raise NotImplementedError

    def next_included_time(self, when: datetime) -> datetime | None:
        """Get the earliest instant after ``when`` that may be included.

        The default steps day by day from the next local midnight, which suits
        calendars that exclude whole days.

        Args:
            when: An instant, usually one that is excluded.

        Returns:
            The next candidate instant, or None if none exists within
            MAX_EXCLUDED_DAYS.
        """
        local = when.astimezone(self.timezone)
        day = local.date()
        for _ in range(MAX_EXCLUDED_DAYS):
            day += timedelta(days=1)
            candidate = datetime.combine(day, time.min, tzinfo=self.timezone)
            if self.is_time_included(candidate):
                return candidate
        return None

    @property
    def calendar_type(self) -> CalendarType:
        raise NotImplementedError


@dataclass(frozen=True)
class AnnualCalendar(BaseCalendar):
    """Excludes a set of month-day pairs every year."""

    excluded_days: frozenset[tuple[int, int]] = frozenset()

    @property
    def calendar_type(self) -> CalendarType:
        return CalendarType.ANNUAL

    def is_time_included(self, when: datetime) -> bool:
        local = when.astimezone(self.timezone)
        return (local.month, local.day) not in self.excluded_days


@dataclass(frozen=True)
class HolidayCalendar(BaseCalendar):
    """Excludes a set of full dates."""

    excluded_dates: frozenset[date] = frozenset()

    @property
    def calendar_type(self) -> CalendarType:
        return CalendarType.HOLIDAY

    def is_time_included(self, when: datetime) -> bool:
        return when.astimezone(self.timezone).date() not in self.excluded_dates


@dataclass(frozen=True)
class DailyCalendar(BaseCalendar):
    """Excludes one wall-clock window every day, both ends inclusive."""

    start_time: time = time.min
    end_time: time = time.max

    @property
    def calendar_type(self) -> CalendarType:
        return CalendarType.DAILY

    def is_time_included(self, when: datetime) -> bool:
        local_time = when.astimezone(self.timezone).time()
        return not (self.start_time <= local_time <= self.end_time)

    def next_included_time(self, when: datetime) -> datetime | None:
        local = when.astimezone(self.timezone)
        local_time = local.time()
        if local_time < self.start_time or local_time > self.end_time:
            return when
        window_end = datetime.combine(local.date(), self.end_time, tzinfo=self.timezone)
        return window_end + timedelta(milliseconds=1)


@dataclass(frozen=True)
class WeeklyCalendar(BaseCalendar):
    """Excludes days of the week, numbered 1 (Sunday) to 7 (Saturday)."""

    excluded_days: frozenset[int] = frozenset({1, 7})

    @property
    def calendar_type(self) -> CalendarType:
        return CalendarType.WEEKLY

    def is_time_included(self, when: datetime) -> bool:
        weekday = when.astimezone(self.timezone).isoweekday() % 7 + 1
        return weekday not in self.excluded_days


@dataclass(frozen=True)
class MonthlyCalendar(BaseCalendar):
    """Excludes days of the month (1-31)."""

    excluded_days: frozenset[int] = frozenset()

    @property
    def calendar_type(self) -> CalendarType:
        return CalendarType.MONTHLY

    def is_time_included(self, when: datetime) -> bool:
        return when.astimezone(self.timezone).day not in self.excluded_days


@dataclass(frozen=True)
class CronCalendar(BaseCalendar):
    """Excludes every instant matched by a secondary cron expression."""

    expression: CronExpression | None = None

    @property
    def calendar_type(self) -> CalendarType:
        return CalendarType.CRON

    def is_time_included(self, when: datetime) -> bool:
        if self.expression is None:
            return True
        return not self.expression.is_satisfied_by(when, self.timezone)

    def next_included_time(self, when: datetime) -> datetime | None:
        """Get the first whole second after ``when`` that is not excluded.

        Runs of excluded instants are crossed a minute, an hour or a day at a
        time when the expression matches every second of that unit.

        Returns:
            The instant in the calendar's zone, or None if everything up to
            YEAR_TO_GIVEUP_SCHEDULING_AT is excluded.
        """
        candidate = _shift(
            when.replace(microsecond=0), timedelta(seconds=1), self.timezone
        )
        while candidate is not None and candidate.year <= YEAR_TO_GIVEUP_SCHEDULING_AT:
            if self.is_time_included(candidate):
                return candidate
            candidate = self._skip_excluded(candidate)
        return None

    def _skip_excluded(self, candidate: datetime) -> datetime | None:
        expression = self.expression
        assert expression is not None
        if not expression.covers_every("second"):
            step = timedelta(seconds=1)
        elif not expression.covers_every("minute"):
            step = timedelta(seconds=60 - candidate.second)
        elif not expression.covers_every("hour"):
            step = timedelta(minutes=60 - candidate.minute, seconds=-candidate.second)
        else:
            day = expression.next_unmatched_date(candidate.date())
            if day is None:
                return None
            midnight = datetime.combine(day, time.min, tzinfo=self.timezone)
            return _shift(midnight, timedelta(0), self.timezone)
        return _shift(candidate, step, self.timezone)


Calendar = (
    AnnualCalendar
    | HolidayCalendar
    | DailyCalendar
    | WeeklyCalendar
    | MonthlyCalendar
    | CronCalendar
)


def _shift(when: datetime, delta: timedelta, zone: tzinfo) -> datetime:
    # Elapsed-time arithmetic, so wall clock gaps and repeats are not skipped
    return (when.astimezone(dt_timezone.utc) + delta).astimezone(zone)


# ============================================================================
# Parsing
# ============================================================================


def _string_list(name: str, config: Mapping[str, Any], field: str, kind: str) -> list[str]:
    values = config.get(field)
    if not isinstance(values, (list, tuple)) or not values:
        raise InvalidCalendarConfig(
            f"Invalid or Missing Configuration entry '{field}' for {kind} calendar "
            f"{name}. You must provide a non-empty list of dates.",
            name,
            field,
        )
    if not all(isinstance(v, str) for v in values):
        raise InvalidCalendarConfig(
            f"{kind} calendar {name} - '{field}' must be a list of strings",
            name,
            field,
        )
    return list(values)


def _int_list(
    name: str, config: Mapping[str, Any], kind: str, low: int, high: int
) -> list[int]:
    values = config.get("excludeDays")
    if not isinstance(values, (list, tuple)) or not all(
        isinstance(v, int) and not isinstance(v, bool) for v in values
    ):
        raise InvalidCalendarConfig(
            f"Invalid or Missing Configuration entry 'excludeDays' for {kind} calendar "
            f"{name}. You must provide a list of Integers between {low} and {high}.",
            name,
            "excludeDays",
        )
    for day in values:
        if day < low or day > high:
            raise InvalidCalendarConfig(
                f"{kind} calendar {name} - 'excludeDays' must consist of a list of "
                f"Integers between {low} and {high}",
                name,
                "excludeDays",
            )
    return list(values)


def parse_time_of_day(raw: str) -> time:
    """Parse a 24-hour ``HH:MM[:SS[.mmm]]`` time.

    Args:
        raw: Time text, e.g. ``"09:30"`` or ``"17:00:00.500"``.

    Returns:
        Parsed time.

    Raises:
        ValueError: If the text is not a valid time of day.
    """
    match = _TIME_RE.match(raw.strip()) if isinstance(raw, str) else None
    if not match:
        raise ValueError(f"'{raw}' is not in the format HH:MM[:SS[.mmm]]")
    hour, minute = int(match.group(1)), int(match.group(2))
    second = int(match.group(3) or 0)
    millis = int(match.group(4) or 0)
    return time(hour, minute, second, millis * 1000)


def parse_annual_calendar(
    name: str, config: Mapping[str, Any], tz: tzinfo, description: str
) -> AnnualCalendar:
    excluded: set[tuple[int, int]] = set()
    for raw in _string_list(name, config, "excludeDates", "Annual"):
        try:
            # Leap year so that 02-29 is accepted
            parsed = datetime.strptime(f"2000-{raw}", "%Y-%m-%d")
        except ValueError as e:
            raise InvalidCalendarConfig(
                f"Invalid date {raw} in Annual calendar {name} - 'excludeDates'. "
                "You must provide dates in the format 'MM-DD'.",
                name,
                "excludeDates",
            ) from e
        excluded.add((parsed.month, parsed.day))
    return AnnualCalendar(
        name=name, timezone=tz, description=description, excluded_days=frozenset(excluded)
    )


def parse_holiday_calendar(
    name: str, config: Mapping[str, Any], tz: tzinfo, description: str
) -> HolidayCalendar:
    excluded: set[date] = set()
    for raw in _string_list(name, config, "excludeDates", "Holiday"):
        try:
            excluded.add(date.fromisoformat(raw))
        except ValueError as e:
            raise InvalidCalendarConfig(
                f"Invalid date {raw} in Holiday calendar {name} - 'excludeDates'. "
                "You must provide an ISO-8601 compliant date ('YYYY-MM-DD').",
                name,
                "excludeDates",
            ) from e
    return HolidayCalendar(
        name=name, timezone=tz, description=description, excluded_dates=frozenset(excluded)
    )


def parse_daily_calendar(
    name: str, config: Mapping[str, Any], tz: tzinfo, description: str
) -> DailyCalendar:
    block = config.get("exclude")
    if not isinstance(block, Mapping):
        block = config

    parsed: dict[str, time] = {}
    for field in ("startTime", "endTime"):
        try:
            parsed[field] = parse_time_of_day(block[field])
        except (KeyError, ValueError) as e:
            raise InvalidCalendarConfig(
                f"Invalid or Missing Configuration entry 'exclude.{field}' for Daily "
                f"calendar {name}. You must provide a time in the format "
                "'HH:MM[:SS[.mmm]]'",
                name,
                f"exclude.{field}",
            ) from e

    if parsed["startTime"] >= parsed["endTime"]:
        raise InvalidCalendarConfig(
            f"Daily calendar {name} - the range start time must be before the end "
            "time and cannot cross midnight",
            name,
            "exclude",
        )
    return DailyCalendar(
        name=name,
        timezone=tz,
        description=description,
        start_time=parsed["startTime"],
        end_time=parsed["endTime"],
    )


def parse_weekly_calendar(
    name: str, config: Mapping[str, Any], tz: tzinfo, description: str
) -> WeeklyCalendar:
    exclude_days = _int_list(name, config, "Weekly", 1, 7)
    exclude_weekends = config.get("excludeWeekends", True)
    if not isinstance(exclude_weekends, bool):
        raise InvalidCalendarConfig(
            f"Weekly calendar {name} - 'excludeWeekends' must be a boolean",
            name,
            "excludeWeekends",
        )

    excluded = set(exclude_days)
    if exclude_weekends:
        excluded |= {1, 7}
    elif 1 in excluded or 7 in excluded:
        raise InvalidCalendarConfig(
            f"Weekly calendar {name} - Cannot set 'excludeWeekends' to false when you "
            "have explicitly excluded Saturday (7) or Sunday (1)",
            name,
            "excludeWeekends",
        )
    return WeeklyCalendar(
        name=name, timezone=tz, description=description, excluded_days=frozenset(excluded)
    )


def parse_monthly_calendar(
    name: str, config: Mapping[str, Any], tz: tzinfo, description: str
) -> MonthlyCalendar:
    exclude_days = _int_list(name, config, "Monthly", 1, 31)
    return MonthlyCalendar(
        name=name,
        timezone=tz,
        description=description,
        excluded_days=frozenset(exclude_days),
    )


def parse_cron_calendar(
    name: str, config: Mapping[str, Any], tz: tzinfo, description: str
) -> CronCalendar:
    raw = config.get("excludeExpression")
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidCalendarConfig(
            f"Invalid or Missing Configuration entry 'excludeExpression' for Cron "
            f"calendar {name}. You must provide a valid cron expression.",
            name,
            "excludeExpression",
        )
    try:
        expression = CronExpression.parse(raw)
    except InvalidExpression as e:
        raise InvalidCalendarConfig(
            f"Invalid 'excludeExpression' for Cron calendar {name}. "
            f"Failed to validate cron expression: {e}",
            name,
            "excludeExpression",
        ) from e
    return CronCalendar(
        name=name, timezone=tz, description=description, expression=expression
    )


_PARSERS = {
    CalendarType.ANNUAL: parse_annual_calendar,
    CalendarType.HOLIDAY: parse_holiday_calendar,
    CalendarType.DAILY: parse_daily_calendar,
    CalendarType.WEEKLY: parse_weekly_calendar,
    CalendarType.MONTHLY: parse_monthly_calendar,
    CalendarType.CRON: parse_cron_calendar,
}


def parse_calendar(
    name: str, config: Mapping[str, Any], default_timezone: tzinfo
) -> Calendar:
    """Parse one declarative calendar entry.

    Args:
        name: Calendar name.
        config: The entry's fields.
        default_timezone: Zone used when the entry has no ``timezone``.

    Returns:
        The parsed calendar.

    Raises:
        UnknownCalendarType: If ``type`` is missing or unsupported.
        InvalidCalendarConfig: If a kind-specific field is missing or invalid.
    """
    if not isinstance(config, Mapping):
        raise InvalidCalendarConfig(
            f"Calendar {name} must be a mapping of settings", name, "type"
        )

    try:
        tz = resolve_timezone(config.get("timezone"), default_timezone)
    except ValueError as e:
        raise InvalidCalendarConfig(
            f"Invalid 'timezone' for calendar {name}: {e}", name, "timezone"
        ) from e
    description = config.get("description") or ""

    raw_type = config.get("type")
    if not raw_type:
        raise UnknownCalendarType(f"Calendar Type must be defined for {name}", name)
    try:
        kind = CalendarType(str(raw_type).upper())
    except ValueError as e:
        raise UnknownCalendarType(
            f"Unknown calendar type {raw_type} for calendar {name}. Valid types are "
            "Annual, Holiday, Daily, Monthly, Weekly, and Cron.",
            name,
        ) from e

    calendar = _PARSERS[kind](name, config, tz, description)
    logger.debug("Parsed %s calendar '%s'", kind.value, name)
    return calendar


def parse_calendars(
    entries: Mapping[str, Mapping[str, Any]], default_timezone: tzinfo
) -> dict[str, Calendar]:
    """Parse a mapping of calendar name to entry."""
    return {
        name: parse_calendar(name, entry, default_timezone)
        for name, entry in entries.items()
    }
