"""Calendar helpers — day iteration and local-time conversion."""

from datetime import date, datetime, timedelta, timezone
from typing import Iterator
from zoneinfo import ZoneInfo


def zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def local_datetime(timestamp: int, tz: ZoneInfo) -> datetime:
    """Epoch seconds → naive wall-clock datetime in ``tz``.

    Stored timestamps are naive local time so weekday/hour passes and
    day-scoped deletes agree with the configured calendar on every dialect.
    """
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).astimezone(tz).replace(tzinfo=None)


def local_today(tz: ZoneInfo) -> date:
    return datetime.now(tz).date()


def as_day(value: date | datetime) -> date:
    """Normalize a date or datetime to its calendar day."""
    if isinstance(value, datetime):
        return value.date()
    return value


def iter_days(start: date, end: date) -> Iterator[date]:
    """Inclusive ascending walk from ``start`` to ``end``."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def month_label(day: date) -> str:
    """'January 2025' style label used for month-boundary progress lines."""
    return day.strftime("%B %Y")


def year_bounds(year: int) -> tuple[date, date]:
    """[Jan 1, Jan 1 of next year) for a calendar year."""
    return date(year, 1, 1), date(year + 1, 1, 1)
