"""Date manipulation utilities"""

import calendar
from datetime import datetime, timezone

SECONDS_PER_DAY = 24 * 60 * 60


def ensure_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC"""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def add_months(moment: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length (Jan 31 + 1 -> Feb 28/29)"""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def elapsed_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds from start to end, never negative"""
    return max(0, int((ensure_utc(end) - ensure_utc(start)).total_seconds()))


def whole_days(seconds: int) -> int:
    return max(0, seconds) // SECONDS_PER_DAY
