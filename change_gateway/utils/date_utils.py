"""Date manipulation utilities"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the store keeps naive UTC)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_hours(from_time: datetime, hours: int) -> datetime:
    return from_time + timedelta(hours=hours)


def whole_days_between(start: datetime, end: datetime) -> int:
    """Number of complete days elapsed from start to end (never negative)"""
    return max((end - start).days, 0)
