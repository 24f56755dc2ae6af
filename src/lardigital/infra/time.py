"""Time utilities for consistent timestamp handling.

Attendance dates and punch times are household-local wall-clock values,
so everything user-facing goes through `to_local`.
"""

import os
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "America/Sao_Paulo"


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def local_zone() -> ZoneInfo:
    """Household timezone from APP_TIMEZONE."""
    return ZoneInfo(os.environ.get("APP_TIMEZONE", DEFAULT_TIMEZONE))


def to_local(moment: datetime) -> datetime:
    """Convert an aware datetime to household-local time."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(local_zone())


def local_date(moment: datetime) -> date:
    return to_local(moment).date()


def local_hhmm(moment: datetime) -> str:
    """Format a moment as local HH:MM."""
    return to_local(moment).strftime("%H:%M")
