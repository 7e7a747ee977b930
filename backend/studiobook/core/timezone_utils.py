# backend/studiobook/core/timezone_utils.py
"""
Timezone helpers.

Booking instants are stored in UTC; studio opening hours are expressed as
wall-clock hours in the studio's zone.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

import pytz

from .config import settings


def get_studio_timezone(name: Optional[str] = None) -> pytz.BaseTzInfo:
    return pytz.timezone(name or settings.studio_timezone)


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def studio_local(value: datetime, tz: Optional[pytz.BaseTzInfo] = None) -> datetime:
    zone = tz or get_studio_timezone()
    return ensure_utc(value).astimezone(zone)


def localize_wall_time(day: date, hour: int, tz: Optional[pytz.BaseTzInfo] = None) -> datetime:
    """
    Build the aware instant for ``hour:00`` on ``day`` in the studio zone.

    ``hour`` may be 24, meaning midnight at the end of ``day``.
    """
    zone = tz or get_studio_timezone()
    if hour >= 24:
        naive = datetime.combine(day + timedelta(days=1), time(0))
    else:
        naive = datetime.combine(day, time(hour))
    return zone.localize(naive)
