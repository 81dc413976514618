"""Quartz-style cron expressions on top of APScheduler's CronTrigger.

Expressions use the Quartz field order::

    second minute hour day-of-month month day-of-week [year]

Day-of-week numbers run from 1 (Sunday) to 7 (Saturday), and ``?`` must be
used in exactly one of the two day fields. Supported specials are ``L`` in
day-of-month (last day), ``nL`` and ``n#k`` in day-of-week (last / k-th
weekday of the month). The nearest-weekday ``W`` forms are rejected.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone as dt_timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger

from cronwire.core.scheduler.errors import InvalidExpression

# Quartz numbering: index + 1 is the day-of-week value
WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")

_ORDINALS = {1: "1st", 2: "2nd", 3: "3rd", 4: "4th", 5: "5th"}

_PLAIN_FIELD_RE = re.compile(r"^[0-9A-Za-z*/,\-]+$")

# Fire times later than this year are treated as "never"
YEAR_TO_GIVEUP_SCHEDULING_AT = 2299

# Number of values of each time-of-day field
_FIELD_SPANS = {"second": 60, "minute": 60, "hour": 24}


def resolve_timezone(
    value: str | tzinfo | None, default: tzinfo | None = None
) -> tzinfo:
    """Resolve a time zone name or object.

    Args:
        value: IANA zone name, tzinfo instance, or None.
        default: Zone returned when value is None. Defaults to UTC.

    Returns:
        The resolved tzinfo.

    Raises:
        ValueError: If the zone name is unknown.
    """
    if value is None:
        return default if default is not None else dt_timezone.utc
    if isinstance(value, tzinfo):
        return value
    try:
        return ZoneInfo(str(value))
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown time zone '{value}'") from e


def _weekday_number(token: str, expression: str) -> int:
    if token.isdigit():
        number = int(token)
        if 1 <= number <= 7:
            return number
    elif token.lower() in WEEKDAY_NAMES:
        return WEEKDAY_NAMES.index(token.lower()) + 1
    raise InvalidExpression(
        f"Invalid day-of-week value '{token}' in cron expression '{expression}'. "
        "Use 1-7 (1 is Sunday) or SUN-SAT.",
        expression,
    )


def _expand_weekdays(part: str, expression: str) -> list[int]:
    base, _, step_text = part.partition("/")
    step = 1
    if step_text:
        if not step_text.isdigit() or int(step_text) < 1:
            raise InvalidExpression(
                f"Invalid day-of-week increment '{part}' in cron expression "
                f"'{expression}'",
                expression,
            )
        step = int(step_text)

    if base == "*":
        first, last = 1, 7
    elif "-" in base:
        start, _, end = base.partition("-")
        first = _weekday_number(start, expression)
        last = _weekday_number(end, expression)
    else:
        first = _weekday_number(base, expression)
        last = 7 if step_text else first

    if last >= first:
        days = list(range(first, last + 1))
    else:
        days = list(range(first, 8)) + list(range(1, last + 1))
    return days[::step]


def _translate_day_of_month(value: str, expression: str) -> str:
    if value == "?":
        return "*"
    upper = value.upper()
    if upper == "L":
        return "last"
    if "W" in upper or "L" in upper:
        raise InvalidExpression(
            f"Unsupported day-of-month value '{value}' in cron expression "
            f"'{expression}'",
            expression,
        )
    return value


def _translate_day_of_week(value: str, expression: str) -> tuple[str | None, str]:
    """Translate a Quartz day-of-week field.

    Returns:
        Tuple of (day-field override or None, APScheduler day_of_week field).
    """
    if value == "?":
        return None, "*"

    upper = value.upper()
    if "#" in upper:
        weekday, _, nth = upper.partition("#")
        if "," in upper or not nth.isdigit() or int(nth) not in _ORDINALS:
            raise InvalidExpression(
                f"Invalid day-of-week value '{value}' in cron expression "
                f"'{expression}'. '#' must be followed by 1-5.",
                expression,
            )
        day_name = WEEKDAY_NAMES[_weekday_number(weekday, expression) - 1]
        return f"{_ORDINALS[int(nth)]} {day_name}", "*"

    if upper == "L":
        return None, "sat"
    if upper.endswith("L"):
        if "," in upper:
            raise InvalidExpression(
                f"Invalid day-of-week value '{value}' in cron expression "
                f"'{expression}'",
                expression,
            )
        day_name = WEEKDAY_NAMES[_weekday_number(upper[:-1], expression) - 1]
        return f"last {day_name}", "*"

    days: list[int] = []
    for part in upper.split(","):
        days.extend(_expand_weekdays(part, expression))
    unique = sorted(set(days))
    if len(unique) == 7:
        return None, "*"
    return None, ",".join(WEEKDAY_NAMES[d - 1] for d in unique)


@dataclass(frozen=True)
class CronExpression:
    """A validated Quartz cron expression and its APScheduler field mapping.

    Attributes:
        expression: The original expression text.
        second: APScheduler ``second`` field.
        minute: APScheduler ``minute`` field.
        hour: APScheduler ``hour`` field.
        day: APScheduler ``day`` field.
        month: APScheduler ``month`` field.
        day_of_week: APScheduler ``day_of_week`` field.
        year: APScheduler ``year`` field.
    """

    expression: str
    second: str
    minute: str
    hour: str
    day: str
    month: str
    day_of_week: str
    year: str = "*"

    @classmethod
    def parse(cls, expression: str) -> CronExpression:
        """Parse and validate a Quartz cron expression.

        Args:
            expression: Expression text, e.g. ``"0/5 * * * * ?"``.

        Returns:
            CronExpression instance.

        Raises:
            InvalidExpression: If the expression is malformed or unsupported.
        """
        if not isinstance(expression, str) or not expression.strip():
            raise InvalidExpression(
                "Cron expression must be a non-empty string", expression
            )

        parts = expression.split()
        if len(parts) not in (6, 7):
            raise InvalidExpression(
                f"Cron expression '{expression}' must have 6 or 7 fields, "
                f"got {len(parts)}",
                expression,
            )

        second, minute, hour, dom, month, dow = parts[:6]
        year = parts[6] if len(parts) == 7 else "*"

        if (dom == "?") == (dow == "?"):
            raise InvalidExpression(
                f"Cron expression '{expression}' must use '?' in exactly one of "
                "the day-of-month and day-of-week fields",
                expression,
            )

        for value in (second, minute, hour, month, year):
            if not _PLAIN_FIELD_RE.match(value):
                raise InvalidExpression(
                    f"Invalid field '{value}' in cron expression '{expression}'",
                    expression,
                )

        day = _translate_day_of_month(dom, expression)
        day_override, day_of_week = _translate_day_of_week(dow, expression)
        if day_override is not None:
            day = day_override

        parsed = cls(
            expression=" ".join(parts),
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month.lower(),
            day_of_week=day_of_week,
            year=year,
        )
        try:
            parsed.to_trigger(dt_timezone.utc)
        except ValueError as e:
            raise InvalidExpression(
                f"Invalid cron expression '{expression}': {e}", expression
            ) from e
        return parsed

    def trigger_fields(self) -> dict[str, str]:
        """Get the keyword arguments for APScheduler's CronTrigger."""
        return {
            "year": self.year,
            "month": self.month,
            "day": self.day,
            "day_of_week": self.day_of_week,
            "hour": self.hour,
            "minute": self.minute,
            "second": self.second,
        }

    def to_trigger(
        self, timezone: tzinfo, start_date: datetime | None = None
    ) -> CronTrigger:
        """Build an APScheduler CronTrigger for this expression.

        Args:
            timezone: Zone the expression is evaluated in.
            start_date: Earliest possible fire time, or None to start now.

        Returns:
            CronTrigger instance.
        """
        return CronTrigger(
            timezone=timezone, start_date=start_date, **self.trigger_fields()
        )

    def is_satisfied_by(self, when: datetime, timezone: tzinfo) -> bool:
        """Check whether an instant matches this expression (second precision)."""
        instant = when.replace(microsecond=0)
        trigger = _compiled_trigger(self, timezone)
        return trigger.get_next_fire_time(None, instant) == instant

    def covers_every(self, field: str) -> bool:
        """Check whether a time-of-day field matches every value of its range.

        Args:
            field: One of ``"second"``, ``"minute"`` or ``"hour"``.
        """
        return len(_field_values(self, field)) == _FIELD_SPANS[field]

    def matches_date(self, day: date) -> bool:
        """Check whether the year, month and day fields match a calendar date."""
        midnight = datetime.combine(day, datetime.min.time(), tzinfo=dt_timezone.utc)
        return _date_trigger(self).get_next_fire_time(None, midnight) == midnight

    def next_unmatched_date(self, day: date) -> date | None:
        """Get the first date after ``day`` that the date fields do not match.

        Whole months are skipped when only the year and month are restricted.

        Returns:
            The date, or None if every date up to YEAR_TO_GIVEUP_SCHEDULING_AT
            matches.
        """
        any_day = self.day == "*" and self.day_of_week == "*"
        if any_day and self.year == "*" and self.month == "*":
            return None

        day += timedelta(days=1)
        while day.year <= YEAR_TO_GIVEUP_SCHEDULING_AT:
            if not self.matches_date(day):
                return day
            if any_day:
                day = (day.replace(day=1) + timedelta(days=32)).replace(day=1)
            else:
                day += timedelta(days=1)
        return None

    def __str__(self) -> str:
        return self.expression


@functools.lru_cache(maxsize=64)
def _compiled_trigger(expression: CronExpression, timezone: tzinfo) -> CronTrigger:
    return expression.to_trigger(timezone)


@functools.lru_cache(maxsize=64)
def _date_trigger(expression: CronExpression) -> CronTrigger:
    return CronTrigger(
        year=expression.year,
        month=expression.month,
        day=expression.day,
        day_of_week=expression.day_of_week,
        hour=0,
        minute=0,
        second=0,
        timezone=dt_timezone.utc,
    )


@functools.lru_cache(maxsize=256)
def _field_values(expression: CronExpression, field: str) -> frozenset[int]:
    # Collect the matching values over a single reference day
    fields = {"second": "0", "minute": "0", "hour": "0"}
    fields[field] = getattr(expression, field)
    trigger = CronTrigger(
        year=2000, month=1, day=1, timezone=dt_timezone.utc, **fields
    )
    values = set()
    fire_time = trigger.get_next_fire_time(
        None, datetime(2000, 1, 1, tzinfo=dt_timezone.utc)
    )
    while fire_time is not None:
        values.add(getattr(fire_time, field))
        fire_time = trigger.get_next_fire_time(None, fire_time + timedelta(seconds=1))
    return frozenset(values)


def validate_expression(expression: str) -> bool:
    """Return True if the expression parses as a supported cron expression."""
    try:
        CronExpression.parse(expression)
    except InvalidExpression:
        return False
    return True
