from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    slug: str
    start: datetime
    end: datetime


def local_now(timezone: Optional[str] = None) -> datetime:
    """Current wall-clock time in the configured timezone, naive."""
    tz = ZoneInfo(timezone or get_settings().timezone)
    return datetime.now(tz).replace(tzinfo=None)


def to_local(value: datetime, timezone: Optional[str] = None) -> datetime:
    if value.tzinfo is None:
        return value
    tz = ZoneInfo(timezone or get_settings().timezone)
    return value.astimezone(tz).replace(tzinfo=None)


def month_to_date(as_of: datetime) -> Period:
    first = as_of.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return Period("this_month", first, as_of)


def year_to_date(as_of: datetime) -> Period:
    first = as_of.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return Period("this_year", first, as_of)
