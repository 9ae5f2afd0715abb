"""Clinic-local calendar helpers.

Timestamps are stored as naive UTC datetimes. Clinic days, reminder times
and message texts follow ``settings.CLINIC_TIMEZONE``.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from .config import settings


def clinic_tz() -> ZoneInfo:
    return ZoneInfo(settings.CLINIC_TIMEZONE)


def utcnow() -> datetime:
    return datetime.utcnow()


def to_local(value: datetime) -> datetime:
    """Convert a naive UTC datetime to an aware clinic-local datetime."""
    return value.replace(tzinfo=timezone.utc).astimezone(clinic_tz())


def local_to_utc(day: date, at: time) -> datetime:
    """Naive UTC datetime for a wall-clock time on a clinic-local day."""
    local = datetime.combine(day, at, tzinfo=clinic_tz())
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def local_today(now: Optional[datetime] = None) -> date:
    return to_local(now or utcnow()).date()


def day_bounds(day: Optional[date] = None, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Naive UTC ``[start, end)`` of a clinic-local calendar day."""
    day = day or local_today(now)
    start = local_to_utc(day, time.min)
    end = local_to_utc(day + timedelta(days=1), time.min)
    return start, end


def format_local(value: datetime, fmt: str = "%d %b %Y, %I:%M %p") -> str:
    return to_local(value).strftime(fmt)


def to_utc_naive(value: datetime) -> datetime:
    """Normalise an incoming datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
