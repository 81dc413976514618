# tests/test_calendars.py
"""Tests for exclusion calendars and their declarative parsing."""

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

import pytest

from cronwire.core.scheduler.calendars import (
    AnnualCalendar,
    CalendarType,
    CronCalendar,
    DailyCalendar,
    HolidayCalendar,
    MonthlyCalendar,
    WeeklyCalendar,
    parse_calendar,
    parse_calendars,
    parse_time_of_day,
)
from cronwire.core.scheduler.errors import InvalidCalendarConfig, UnknownCalendarType

UTC = timezone.utc
NEW_YORK = ZoneInfo("America/New_York")

# 2030-01-01 is a Tuesday
SATURDAY = datetime(2030, 1, 5, 10, 0, tzinfo=UTC)
SUNDAY = datetime(2030, 1, 6, 10, 0, tzinfo=UTC)
MONDAY = datetime(2030, 1, 7, 10, 0, tzinfo=UTC)
WEDNESDAY = datetime(2030, 1, 2, 10, 0, tzinfo=UTC)
THURSDAY = datetime(2030, 1, 3, 10, 0, tzinfo=UTC)


class TestWeeklyCalendar:
    """Tests for WEEKLY calendars."""

    def test_weekends_excluded_by_default(self):
        """Test excludeWeekends defaults to true and adds Sunday and Saturday."""
        calendar = parse_calendar("weekly", {"type": "WEEKLY", "excludeDays": [3]}, UTC)

        assert isinstance(calendar, WeeklyCalendar)
        assert calendar.excluded_days == frozenset({1, 3, 7})

    def test_explicit_day_with_weekends(self):
        """Test Wednesday plus weekends are excluded and other days included."""
        calendar = parse_calendar(
            "weekly",
            {"type": "weekly", "excludeDays": [4], "excludeWeekends": True},
            UTC,
        )

        assert not calendar.is_time_included(WEDNESDAY)
        assert not calendar.is_time_included(SATURDAY)
        assert not calendar.is_time_included(SUNDAY)
        assert calendar.is_time_included(THURSDAY)
        assert calendar.is_time_included(MONDAY)

    def test_weekends_kept_when_disabled(self):
        """Test excludeWeekends false keeps Saturday and Sunday."""
        calendar = parse_calendar(
            "weekly",
            {"type": "WEEKLY", "excludeDays": [2], "excludeWeekends": False},
            UTC,
        )

        assert calendar.excluded_days == frozenset({2})
        assert calendar.is_time_included(SATURDAY)
        assert not calendar.is_time_included(MONDAY)

    @pytest.mark.parametrize("weekend_day", [1, 7])
    def test_weekend_day_conflicts_with_disabled_weekends(self, weekend_day):
        """Test excluding a weekend day while keeping weekends is an error."""
        with pytest.raises(InvalidCalendarConfig) as exc_info:
            parse_calendar(
                "weekly",
                {
                    "type": "WEEKLY",
                    "excludeDays": [weekend_day],
                    "excludeWeekends": False,
                },
                UTC,
            )

        assert exc_info.value.field == "excludeWeekends"
        assert exc_info.value.calendar_name == "weekly"

    @pytest.mark.parametrize("days", [[0], [8], ["MON"], None])
    def test_invalid_exclude_days(self, days):
        """Test excludeDays must be integers from 1 to 7."""
        config = {"type": "WEEKLY"}
        if days is not None:
            config["excludeDays"] = days

        with pytest.raises(InvalidCalendarConfig) as exc_info:
            parse_calendar("weekly", config, UTC)

        assert exc_info.value.field == "excludeDays"

    def test_exclude_weekends_must_be_boolean(self):
        """Test a non-boolean excludeWeekends is rejected."""
        with pytest.raises(InvalidCalendarConfig):
            parse_calendar(
                "weekly",
                {"type": "WEEKLY", "excludeDays": [], "excludeWeekends": "no"},
                UTC,
            )

    def test_evaluated_in_own_zone(self):
        """Test the weekday is taken in the calendar's zone."""
        calendar = parse_calendar(
            "weekly",
            {"type": "WEEKLY", "excludeDays": [], "timezone": "America/New_York"},
            UTC,
        )

        # Saturday 03:00 UTC is still Friday evening in New York
        assert calendar.is_time_included(datetime(2030, 1, 5, 3, 0, tzinfo=UTC))
        assert not calendar.is_time_included(datetime(2030, 1, 5, 6, 0, tzinfo=UTC))

    def test_next_included_time_skips_weekend(self):
        """Test stepping from Saturday lands on Monday midnight."""
        calendar = WeeklyCalendar(name="weekly", timezone=UTC)

        assert calendar.next_included_time(SATURDAY) == datetime(
            2030, 1, 7, 0, 0, tzinfo=UTC
        )


class TestAnnualCalendar:
    """Tests for ANNUAL calendars."""

    def test_excludes_every_year(self):
        """Test month-day pairs are excluded regardless of the year."""
        calendar = parse_calendar(
            "annual", {"type": "ANNUAL", "excludeDates": ["12-25", "01-01"]}, UTC
        )

        assert isinstance(calendar, AnnualCalendar)
        assert calendar.calendar_type == CalendarType.ANNUAL
        assert not calendar.is_time_included(datetime(2031, 12, 25, 9, 0, tzinfo=UTC))
        assert not calendar.is_time_included(datetime(2044, 1, 1, 0, 0, tzinfo=UTC))
        assert calendar.is_time_included(datetime(2031, 12, 26, 9, 0, tzinfo=UTC))

    def test_leap_day_accepted(self):
        """Test 02-29 is a valid annual date."""
        calendar = parse_calendar("annual", {"type": "ANNUAL", "excludeDates": ["02-29"]}, UTC)

        assert calendar.excluded_days == frozenset({(2, 29)})

    @pytest.mark.parametrize("dates", [["13-01"], ["2030-12-25"], [], [1225]])
    def test_invalid_dates(self, dates):
        """Test malformed dates and empty lists are rejected."""
        with pytest.raises(InvalidCalendarConfig) as exc_info:
            parse_calendar("annual", {"type": "ANNUAL", "excludeDates": dates}, UTC)

        assert exc_info.value.field == "excludeDates"


class TestHolidayCalendar:
    """Tests for HOLIDAY calendars."""

    def test_excludes_whole_date(self):
        """Test every instant of a listed date is excluded."""
        calendar = parse_calendar(
            "holidays", {"type": "HOLIDAY", "excludeDates": ["2030-07-04"]}, UTC
        )

        assert isinstance(calendar, HolidayCalendar)
        assert calendar.excluded_dates == frozenset({date(2030, 7, 4)})
        assert not calendar.is_time_included(datetime(2030, 7, 4, 0, 0, tzinfo=UTC))
        assert not calendar.is_time_included(datetime(2030, 7, 4, 23, 59, 59, tzinfo=UTC))
        assert calendar.is_time_included(datetime(2030, 7, 5, 0, 0, tzinfo=UTC))
        assert calendar.is_time_included(datetime(2031, 7, 4, 12, 0, tzinfo=UTC))

    def test_non_iso_date_rejected(self):
        """Test dates must be YYYY-MM-DD."""
        with pytest.raises(InvalidCalendarConfig, match="ISO-8601"):
            parse_calendar(
                "holidays", {"type": "HOLIDAY", "excludeDates": ["07/04/2030"]}, UTC
            )


class TestDailyCalendar:
    """Tests for DAILY calendars."""

    @pytest.fixture
    def office_hours(self) -> DailyCalendar:
        return parse_calendar(
            "office",
            {"type": "DAILY", "exclude": {"startTime": "09:00", "endTime": "17:00"}},
            UTC,
        )

    def test_window_ends_inclusive(self, office_hours):
        """Test both window ends are excluded."""
        day = (2030, 1, 7)

        assert not office_hours.is_time_included(datetime(*day, 9, 0, tzinfo=UTC))
        assert not office_hours.is_time_included(datetime(*day, 12, 0, tzinfo=UTC))
        assert not office_hours.is_time_included(datetime(*day, 17, 0, tzinfo=UTC))
        assert office_hours.is_time_included(datetime(*day, 8, 59, 59, tzinfo=UTC))
        assert office_hours.is_time_included(datetime(*day, 17, 0, 1, tzinfo=UTC))

    def test_next_included_time_after_window(self, office_hours):
        """Test stepping from inside the window lands just after its end."""
        result = office_hours.next_included_time(datetime(2030, 1, 7, 10, 0, tzinfo=UTC))

        assert result == datetime(2030, 1, 7, 17, 0, 0, 1000, tzinfo=UTC)

    def test_flat_fields_accepted(self):
        """Test start and end times may be given without the exclude block."""
        calendar = parse_calendar(
            "night", {"type": "DAILY", "startTime": "00:00", "endTime": "05:30:00"}, UTC
        )

        assert calendar.start_time == time(0, 0)
        assert calendar.end_time == time(5, 30)

    def test_window_crossing_midnight_rejected(self):
        """Test a window whose start is after its end is rejected."""
        with pytest.raises(InvalidCalendarConfig) as exc_info:
            parse_calendar(
                "night",
                {"type": "DAILY", "exclude": {"startTime": "22:00", "endTime": "02:00"}},
                UTC,
            )

        assert exc_info.value.field == "exclude"

    def test_missing_end_time(self):
        """Test a missing endTime names the field."""
        with pytest.raises(InvalidCalendarConfig) as exc_info:
            parse_calendar("night", {"type": "DAILY", "exclude": {"startTime": "22:00"}}, UTC)

        assert exc_info.value.field == "exclude.endTime"


class TestMonthlyAndCronCalendars:
    """Tests for MONTHLY and CRON calendars."""

    def test_monthly_excludes_days(self):
        """Test listed days of the month are excluded."""
        calendar = parse_calendar(
            "monthly", {"type": "MONTHLY", "excludeDays": [1, 15]}, UTC
        )

        assert isinstance(calendar, MonthlyCalendar)
        assert not calendar.is_time_included(datetime(2030, 1, 15, 8, 0, tzinfo=UTC))
        assert calendar.is_time_included(datetime(2030, 1, 16, 8, 0, tzinfo=UTC))

    def test_monthly_rejects_day_32(self):
        """Test days of month must be between 1 and 31."""
        with pytest.raises(InvalidCalendarConfig):
            parse_calendar("monthly", {"type": "MONTHLY", "excludeDays": [32]}, UTC)

    def test_cron_calendar_excludes_matching_instants(self):
        """Test instants matching the exclusion expression are excluded."""
        calendar = parse_calendar(
            "nights", {"type": "CRON", "excludeExpression": "* * 0-5 * * ?"}, UTC
        )

        assert isinstance(calendar, CronCalendar)
        assert not calendar.is_time_included(datetime(2030, 1, 7, 3, 0, tzinfo=UTC))
        assert calendar.is_time_included(datetime(2030, 1, 7, 6, 0, tzinfo=UTC))

    def test_cron_calendar_next_included_time(self):
        """Test stepping out of a cron exclusion lands on the first free second."""
        calendar = parse_calendar(
            "nights", {"type": "CRON", "excludeExpression": "* * 0-5 * * ?"}, UTC
        )

        result = calendar.next_included_time(datetime(2030, 1, 7, 5, 59, 58, tzinfo=UTC))

        assert result == datetime(2030, 1, 7, 6, 0, 0, tzinfo=UTC)

    def test_cron_calendar_month_long_exclusion(self):
        """Test a whole excluded month is crossed in one step."""
        calendar = parse_calendar(
            "december", {"type": "CRON", "excludeExpression": "* * * * 12 ?"}, UTC
        )

        result = calendar.next_included_time(datetime(2026, 12, 1, 12, 0, tzinfo=UTC))

        assert result == datetime(2027, 1, 1, 0, 0, tzinfo=UTC)

    def test_cron_calendar_excluded_weekdays(self):
        """Test whole excluded days are crossed to the next free midnight."""
        calendar = parse_calendar(
            "workdays", {"type": "CRON", "excludeExpression": "* * * ? * 2-6"}, UTC
        )

        # 2030-01-07 is a Monday
        result = calendar.next_included_time(datetime(2030, 1, 7, 9, 30, tzinfo=UTC))

        assert result == datetime(2030, 1, 12, 0, 0, tzinfo=UTC)

    def test_cron_calendar_partial_minutes(self):
        """Test excluded minutes are crossed a minute at a time."""
        calendar = parse_calendar(
            "quarter", {"type": "CRON", "excludeExpression": "* 0-14 * * * ?"}, UTC
        )

        result = calendar.next_included_time(datetime(2030, 1, 7, 9, 3, 20, tzinfo=UTC))

        assert result == datetime(2030, 1, 7, 9, 15, 0, tzinfo=UTC)

    def test_cron_calendar_everything_excluded(self):
        """Test an expression matching every instant has no included time."""
        calendar = parse_calendar(
            "always", {"type": "CRON", "excludeExpression": "* * * * * ?"}, UTC
        )

        assert calendar.next_included_time(datetime(2030, 1, 7, tzinfo=UTC)) is None

    def test_cron_calendar_local_zone(self):
        """Test the excluded month is read in the calendar's zone."""
        calendar = parse_calendar(
            "december",
            {
                "type": "CRON",
                "excludeExpression": "* * * * 12 ?",
                "timezone": "Europe/Berlin",
            },
            UTC,
        )

        result = calendar.next_included_time(datetime(2026, 12, 15, tzinfo=UTC))

        assert result == datetime(2026, 12, 31, 23, 0, tzinfo=UTC)

    def test_cron_calendar_invalid_expression(self):
        """Test an invalid exclusion expression is a calendar error."""
        with pytest.raises(InvalidCalendarConfig) as exc_info:
            parse_calendar("nights", {"type": "CRON", "excludeExpression": "* * *"}, UTC)

        assert exc_info.value.field == "excludeExpression"


class TestParseCalendar:
    """Tests for the calendar type dispatch."""

    def test_missing_type(self):
        """Test a calendar without a type is rejected."""
        with pytest.raises(UnknownCalendarType, match="must be defined"):
            parse_calendar("nameless", {"excludeDays": [1]}, UTC)

    def test_unknown_type(self):
        """Test an unsupported type is rejected."""
        with pytest.raises(UnknownCalendarType) as exc_info:
            parse_calendar("lunar", {"type": "LUNAR"}, UTC)

        assert exc_info.value.calendar_name == "lunar"

    def test_unknown_timezone(self):
        """Test an unknown time zone is a calendar error."""
        with pytest.raises(InvalidCalendarConfig) as exc_info:
            parse_calendar(
                "weekly", {"type": "WEEKLY", "excludeDays": [], "timezone": "Nowhere/City"}, UTC
            )

        assert exc_info.value.field == "timezone"

    def test_default_timezone_and_description(self):
        """Test the default zone applies and the description is kept."""
        calendar = parse_calendar(
            "weekly",
            {"type": "WEEKLY", "excludeDays": [], "description": "Business days"},
            NEW_YORK,
        )

        assert calendar.timezone == NEW_YORK
        assert calendar.description == "Business days"

    def test_parse_calendars(self):
        """Test parsing a mapping of entries."""
        calendars = parse_calendars(
            {
                "weekly": {"type": "WEEKLY", "excludeDays": []},
                "monthly": {"type": "MONTHLY", "excludeDays": [1]},
            },
            UTC,
        )

        assert sorted(calendars) == ["monthly", "weekly"]
        assert calendars["monthly"].name == "monthly"


class TestParseTimeOfDay:
    """Tests for parse_time_of_day."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("7:05", time(7, 5)),
            ("17:00:30", time(17, 0, 30)),
            ("17:00:00.500", time(17, 0, 0, 500000)),
            ("23:59:59:999", time(23, 59, 59, 999000)),
        ],
    )
    def test_valid_times(self, raw, expected):
        """Test supported time formats."""
        assert parse_time_of_day(raw) == expected

    @pytest.mark.parametrize("raw", ["25:00", "noon", "9", ""])
    def test_invalid_times(self, raw):
        """Test invalid times raise ValueError."""
        with pytest.raises(ValueError):
            parse_time_of_day(raw)
