"""Calendar helpers and the explicit clock passed to scheduler operations."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime
from zoneinfo import ZoneInfo

from backend.config import get_settings
from backend.errors import ValidationError

MIN_YEAR = 1970
MAX_YEAR = 9999


def app_timezone() -> ZoneInfo:
    """Return the configured application timezone."""
    return ZoneInfo(get_settings().timezone)


def today_local() -> date:
    """Return the current date in the application timezone."""
    return datetime.now(tz=app_timezone()).date()


def validate_month(year: int, month: int) -> None:
    """Reject years and months the scheduler cannot address.

    Raises:
        ValidationError: If the year or month is out of range.
    """
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValidationError(f"Year must be between {MIN_YEAR} and {MAX_YEAR}")
    if not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12")


def days_in_month(year: int, month: int) -> int:
    """Return the number of days in the given month."""
    return calendar.monthrange(year, month)[1]


def month_token(year: int, month: int) -> str:
    """Return the "YYYY-MM" token used by reviewed marks."""
    return f"{year:04d}-{month:02d}"


def parse_month_token(token: str) -> tuple[int, int]:
    """Parse a "YYYY-MM" token into (year, month).

    Raises:
        ValidationError: If the token is malformed or out of range.
    """
    parts = token.split("-")
    if len(parts) != 2 or len(parts[0]) != 4 or len(parts[1]) != 2:
        raise ValidationError("Invalid month; use YYYY-MM")
    try:
        year, month = int(parts[0]), int(parts[1])
    except ValueError as exc:
        raise ValidationError("Invalid month; use YYYY-MM") from exc
    validate_month(year, month)
    return year, month


def parse_iso_date(value: str) -> date:
    """Parse a "YYYY-MM-DD" string.

    Raises:
        ValidationError: If the value is not an ISO calendar date.
    """
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Date is required (format: YYYY-MM-DD)") from exc


def day_iso(year: int, month: int, day: int) -> str:
    """Return the ISO date string for a day of a month."""
    return date(year, month, day).isoformat()


def month_bounds(year: int, month: int) -> tuple[str, str]:
    """Return the first and last ISO dates of a month."""
    return day_iso(year, month, 1), day_iso(year, month, days_in_month(year, month))


def next_month(year: int, month: int) -> tuple[int, int]:
    """Return (year, month) of the month after the given one."""
    if month == 12:
        return year + 1, 1
    return year, month + 1


def previous_month(year: int, month: int) -> tuple[int, int]:
    """Return (year, month) of the month before the given one."""
    if month == 1:
        return year - 1, 12
    return year, month - 1


@dataclass(frozen=True)
class ClockContext:
    """Snapshot of "today" used by every reconciliation operation."""

    year: int
    month: int
    day_of_month: int
    days_in_month: int

    @classmethod
    def from_date(cls, value: date) -> ClockContext:
        return cls(
            year=value.year,
            month=value.month,
            day_of_month=value.day,
            days_in_month=days_in_month(value.year, value.month),
        )

    @classmethod
    def now(cls) -> ClockContext:
        return cls.from_date(today_local())

    @property
    def today(self) -> date:
        return date(self.year, self.month, self.day_of_month)

    @property
    def month_token(self) -> str:
        return month_token(self.year, self.month)

    @property
    def is_last_day_of_month(self) -> bool:
        return self.day_of_month == self.days_in_month
