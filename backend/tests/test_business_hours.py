"""
Unit tests for the business hours calculator.
Tests services/business_hours.py
"""
import pytest
from datetime import datetime, timezone

from services.business_hours import (
    WorkingHoursConfig,
    WorkingHoursConfigError,
    DEFAULT_WORKING_HOURS,
    calculate_business_hours,
    parse_working_hours_config,
    is_working_day,
    format_business_hours,
)

# 2024-01-08 is a Monday
MON = (2024, 1, 8)
FRI = (2024, 1, 12)
SAT = (2024, 1, 13)
NEXT_MON = (2024, 1, 15)


def at(day, hour, minute=0):
    return datetime(*day, hour, minute)


class TestSingleDay:
    """Hours counted within one working day."""

    def test_full_working_day(self):
        assert calculate_business_hours(at(MON, 8), at(MON, 17)) == 9

    def test_start_before_window(self):
        """Only 08:00-10:00 counts when starting at 06:00."""
        assert calculate_business_hours(at(MON, 6), at(MON, 10)) == 2

    def test_end_after_window(self):
        """Only 16:00-17:00 counts when ending at 20:00."""
        assert calculate_business_hours(at(MON, 16), at(MON, 20)) == 1

    def test_entirely_outside_window(self):
        assert calculate_business_hours(at(MON, 18), at(MON, 22)) == 0

    def test_rounds_to_one_decimal(self):
        """20 minutes is 0.333... hours."""
        assert calculate_business_hours(at(MON, 8), at(MON, 8, 20)) == 0.3


class TestMultiDay:
    """Day-by-day walk across nights and weekends."""

    def test_weekend_is_skipped(self):
        """Friday 16:00 to Monday 10:00 is 1 hour Friday + 2 hours Monday."""
        assert calculate_business_hours(at(FRI, 16), at(NEXT_MON, 10)) == 3

    def test_three_full_days(self):
        assert calculate_business_hours(at(MON, 8), at((2024, 1, 10), 17)) == 27

    def test_weekend_only(self):
        assert calculate_business_hours(at(SAT, 9), at((2024, 1, 14), 17)) == 0

    def test_full_week(self):
        assert calculate_business_hours(at(MON, 0), at(NEXT_MON, 0)) == 45

    def test_custom_calendar(self):
        """Saturday counts when configured as a working day."""
        config = WorkingHoursConfig(start_hour=9, end_hour=13, working_days=[6])
        assert calculate_business_hours(at(FRI, 9), at(SAT, 17), config) == 4


class TestEdgeCases:

    def test_end_before_start(self):
        assert calculate_business_hours(at(MON, 12), at(MON, 9)) == 0

    def test_equal_bounds(self):
        assert calculate_business_hours(at(MON, 12), at(MON, 12)) == 0

    def test_missing_start(self):
        assert calculate_business_hours(None, at(MON, 12)) == 0

    def test_missing_end(self):
        assert calculate_business_hours(at(MON, 12), None) == 0

    def test_aware_datetimes_use_business_time_zone(self):
        """16:00 UTC is 08:00 in Los Angeles in January; 01:00 UTC next day is 17:00."""
        start = datetime(2024, 1, 8, 16, 0, tzinfo=timezone.utc)
        end = datetime(2024, 1, 9, 1, 0, tzinfo=timezone.utc)
        assert calculate_business_hours(start, end) == 9


class TestConfigValidation:
    """Invalid calendars fail immediately."""

    def test_default_config(self):
        assert DEFAULT_WORKING_HOURS.start_hour == 8
        assert DEFAULT_WORKING_HOURS.end_hour == 17
        assert DEFAULT_WORKING_HOURS.working_days == [1, 2, 3, 4, 5]
        assert DEFAULT_WORKING_HOURS.hours_per_day == 9

    def test_start_hour_out_of_range(self):
        with pytest.raises(WorkingHoursConfigError):
            calculate_business_hours(at(MON, 8), at(MON, 9), WorkingHoursConfig(start_hour=-1))

    def test_end_hour_out_of_range(self):
        with pytest.raises(WorkingHoursConfigError):
            calculate_business_hours(at(MON, 8), at(MON, 9), WorkingHoursConfig(end_hour=24))

    def test_start_not_before_end(self):
        with pytest.raises(WorkingHoursConfigError, match="must be before"):
            WorkingHoursConfig(start_hour=17, end_hour=8).validate()

    def test_empty_working_days(self):
        with pytest.raises(WorkingHoursConfigError, match="At least one working day"):
            WorkingHoursConfig(working_days=[]).validate()

    def test_invalid_weekday(self):
        with pytest.raises(WorkingHoursConfigError):
            WorkingHoursConfig(working_days=[0, 1]).validate()

    def test_validation_runs_even_without_bounds(self):
        with pytest.raises(WorkingHoursConfigError):
            calculate_business_hours(None, None, WorkingHoursConfig(working_days=[]))

    def test_is_value_error(self):
        assert issubclass(WorkingHoursConfigError, ValueError)


class TestParseWorkingHoursConfig:

    def test_parses_strings(self):
        config = parse_working_hours_config("9", "18", "1,2,3")
        assert (config.start_hour, config.end_hour, config.working_days) == (9, 18, [1, 2, 3])

    def test_filters_invalid_days(self):
        config = parse_working_hours_config("8", "17", "5, 1, x, 9, 0, 1")
        assert config.working_days == [1, 5]

    def test_empty_days_fall_back_to_weekdays(self):
        assert parse_working_hours_config("8", "17", "").working_days == [1, 2, 3, 4, 5]

    def test_non_numeric_hours_fall_back_to_defaults(self):
        config = parse_working_hours_config("abc", None, "1,2,3,4,5")
        assert (config.start_hour, config.end_hour) == (8, 17)

    def test_invalid_combination_raises(self):
        with pytest.raises(WorkingHoursConfigError):
            parse_working_hours_config("18", "9", "1")


class TestHelpers:

    def test_is_working_day(self):
        assert is_working_day(at(MON, 12)) is True
        assert is_working_day(at(SAT, 12)) is False

    def test_format_business_hours(self):
        assert format_business_hours(0) == "0 hours"
        assert format_business_hours(1) == "1 hour"
        assert format_business_hours(2.5) == "2.5 hours"
        assert format_business_hours(3.0) == "3 hours"
