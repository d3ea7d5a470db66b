"""Calendar helpers shared by the session, digest and quota layers."""

from datetime import date, datetime, timedelta


def start_of_day(value: datetime | date) -> datetime:
    """Normalize a timestamp (or date) to local midnight of its calendar day."""
    if isinstance(value, datetime):
        return value.replace(hour=0, minute=0, second=0, microsecond=0)
    return datetime(value.year, value.month, value.day)


def start_of_week(value: datetime) -> datetime:
    """Monday 00:00 of the ISO week containing value."""
    day = start_of_day(value)
    return day - timedelta(days=day.weekday())


def same_month(a: datetime, b: datetime) -> bool:
    """True when both timestamps fall in the same calendar month."""
    return a.year == b.year and a.month == b.month


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days elapsed from earlier to later, never negative."""
    return max(0, (later - earlier).days)
