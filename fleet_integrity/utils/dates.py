# fleet_integrity/utils/dates.py
"""Date helpers shared by the sequence analyzer, detectors and insight engine."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Union

DateLike = Union[date, datetime, str, None]


def to_date(value: DateLike) -> Optional[date]:
    """Normalise a datetime, date or ISO string to a date. Returns None if unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        return None


def to_datetime(value: DateLike) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


def month_key(value: DateLike) -> Optional[str]:
    """YYYY-MM bucket of a date."""
    d = to_date(value)
    return d.strftime("%Y-%m") if d else None


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-date range."""
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, value: DateLike) -> bool:
        d = to_date(value)
        return d is not None and self.start <= d <= self.end

    def previous(self) -> "DateRange":
        """The immediately preceding range of the same length."""
        prev_end = self.start - timedelta(days=1)
        return DateRange(start=prev_end - timedelta(days=self.days - 1), end=prev_end)
