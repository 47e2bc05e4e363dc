"""Time helpers. All timestamps are stored as naive UTC."""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def month_start(value: datetime) -> datetime:
    """Midnight of the first day of the month containing ``value``."""
    return value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def add_months(value: datetime, months: int) -> datetime:
    """Shift a month-start datetime by a (possibly negative) number of months."""
    index = value.year * 12 + (value.month - 1) + months
    return value.replace(year=index // 12, month=index % 12 + 1)


def days(count: int) -> timedelta:
    return timedelta(days=count)
