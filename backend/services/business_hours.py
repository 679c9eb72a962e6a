"""
Legal Review Hub - Business Hours Calculator

Computes elapsed working time between two instants under a configurable work
calendar (daily window + working weekdays). Nights, weekends and any other
non-working day contribute nothing.

The calendar is evaluated in a single business time zone. Naive datetimes are
taken to already be wall-clock time in that zone; aware datetimes are converted.

This module is pure: no I/O, no clock access.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple
import logging

from dateutil import tz

logger = logging.getLogger(__name__)

DEFAULT_START_HOUR = 8
DEFAULT_END_HOUR = 17
DEFAULT_WORKING_DAYS = (1, 2, 3, 4, 5)  # ISO weekdays, Monday = 1
DEFAULT_TIMEZONE = "America/Los_Angeles"


class WorkingHoursConfigError(ValueError):
    """Raised when a working-hours calendar is invalid."""
    pass


@dataclass
class WorkingHoursConfig:
    """Daily working window and the ISO weekdays it applies to."""
    start_hour: int = DEFAULT_START_HOUR
    end_hour: int = DEFAULT_END_HOUR
    working_days: List[int] = field(default_factory=lambda: list(DEFAULT_WORKING_DAYS))
    timezone_name: str = DEFAULT_TIMEZONE

    def validate(self) -> None:
        if not 0 <= self.start_hour <= 23:
            raise WorkingHoursConfigError(
                f"Invalid start hour: {self.start_hour}. Must be between 0 and 23"
            )
        if not 0 <= self.end_hour <= 23:
            raise WorkingHoursConfigError(
                f"Invalid end hour: {self.end_hour}. Must be between 0 and 23"
            )
        if self.start_hour >= self.end_hour:
            raise WorkingHoursConfigError(
                f"Start hour ({self.start_hour}) must be before end hour ({self.end_hour})"
            )
        if not self.working_days:
            raise WorkingHoursConfigError("At least one working day must be configured")
        invalid = [d for d in self.working_days if d not in range(1, 8)]
        if invalid:
            raise WorkingHoursConfigError(f"Invalid working days: {invalid}. Must be 1-7")
        if tz.gettz(self.timezone_name) is None:
            raise WorkingHoursConfigError(f"Unknown time zone: {self.timezone_name}")

    @property
    def hours_per_day(self) -> int:
        return self.end_hour - self.start_hour

    def to_dict(self) -> dict:
        return {
            "start_hour": self.start_hour,
            "end_hour": self.end_hour,
            "working_days": list(self.working_days),
            "timezone": self.timezone_name,
        }


DEFAULT_WORKING_HOURS = WorkingHoursConfig()


# =============================================================================
# CALCULATION
# =============================================================================

def to_business_time(moment: datetime, config: WorkingHoursConfig) -> datetime:
    """Return a naive wall-clock datetime in the calendar's time zone."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(tz.gettz(config.timezone_name)).replace(tzinfo=None)


def _working_window(day: date, config: WorkingHoursConfig) -> Tuple[datetime, datetime]:
    return (
        datetime.combine(day, time(hour=config.start_hour)),
        datetime.combine(day, time(hour=config.end_hour)),
    )


def calculate_business_hours(
    start: Optional[datetime],
    end: Optional[datetime],
    config: WorkingHoursConfig = DEFAULT_WORKING_HOURS
) -> float:
    """
    Business hours elapsed between start and end.

    Walks day by day from start's date to end's date inclusive. For each working
    day the counted window is the day's working window intersected with
    [start, end]. Returns 0 when either bound is missing or end <= start.

    Raises:
        WorkingHoursConfigError: if the calendar is invalid
    """
    config.validate()

    if start is None or end is None:
        return 0.0

    local_start = to_business_time(start, config)
    local_end = to_business_time(end, config)
    if local_end <= local_start:
        return 0.0

    seconds = 0.0
    day = local_start.date()
    last_day = local_end.date()
    while day <= last_day:
        if day.isoweekday() in config.working_days:
            window_start, window_end = _working_window(day, config)
            effective_start = max(local_start, window_start)
            effective_end = min(local_end, window_end)
            if effective_end > effective_start:
                seconds += (effective_end - effective_start).total_seconds()
        day += timedelta(days=1)

    return round(seconds / 3600, 1)


def is_working_day(moment: datetime, config: WorkingHoursConfig = DEFAULT_WORKING_HOURS) -> bool:
    return to_business_time(moment, config).isoweekday() in config.working_days


def format_business_hours(hours: float) -> str:
    """Human-readable hours, e.g. "1 hour", "2.5 hours"."""
    if not hours:
        return "0 hours"
    rounded = round(hours, 1)
    if rounded == 1:
        return "1 hour"
    if rounded == int(rounded):
        return f"{int(rounded)} hours"
    return f"{rounded} hours"


# =============================================================================
# PARSING
# =============================================================================

def _parse_hour(value, default: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        logger.warning("Invalid working hour value %r, using default %d", value, default)
        return default


def parse_working_hours_config(
    start_hour: Optional[str],
    end_hour: Optional[str],
    working_days: Optional[str],
    timezone_name: str = DEFAULT_TIMEZONE
) -> WorkingHoursConfig:
    """
    Build a calendar from raw string settings (env vars or configuration rows).

    Days are a comma-separated list of ISO weekdays; values outside 1-7 and
    non-numeric entries are dropped. An empty result falls back to Mon-Fri.
    The returned config is validated.
    """
    days = []
    for part in (working_days or "").split(","):
        part = part.strip()
        if part.isdigit() and 1 <= int(part) <= 7:
            days.append(int(part))
    days = sorted(set(days)) or list(DEFAULT_WORKING_DAYS)

    config = WorkingHoursConfig(
        start_hour=_parse_hour(start_hour, DEFAULT_START_HOUR),
        end_hour=_parse_hour(end_hour, DEFAULT_END_HOUR),
        working_days=days,
        timezone_name=timezone_name or DEFAULT_TIMEZONE,
    )
    config.validate()
    return config
