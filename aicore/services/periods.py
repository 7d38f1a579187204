"""Relative analytics windows ("30 days", "24 hours", ...)."""
import math
import re
from datetime import datetime, timedelta, date
from typing import List, Tuple, Union

from aicore.exceptions import ValidationError

PERIOD_PATTERN = re.compile(r"^\s*(\d+)\s*([a-zA-Z]+)\s*$")

# Calendar months and years are approximated; windows only need to be stable.
UNIT_SECONDS = {
    "minute": 60,
    "hour": 3600,
    "day": 86400,
    "week": 7 * 86400,
    "month": 30 * 86400,
    "year": 365 * 86400,
}

PeriodLike = Union[str, int, timedelta]


def parse_period(period: PeriodLike) -> timedelta:
    """Turn a period expression into a timedelta.

    Accepts "<n> <unit>" with unit one of minute/hour/day/week/month/year
    (singular or plural), a bare integer number of days, or a timedelta.
    """
    if isinstance(period, timedelta):
        window = period
    elif isinstance(period, bool):
        raise ValidationError(f"Invalid period: {period!r}")
    elif isinstance(period, int):
        window = timedelta(days=period)
    elif isinstance(period, str):
        match = PERIOD_PATTERN.match(period)
        if not match:
            raise ValidationError(f"Invalid period: {period!r}", {"period": period})
        amount = int(match.group(1))
        unit = match.group(2).lower().rstrip("s")
        if unit not in UNIT_SECONDS:
            raise ValidationError(f"Unknown period unit: {match.group(2)!r}", {"period": period})
        window = timedelta(seconds=amount * UNIT_SECONDS[unit])
    else:
        raise ValidationError(f"Invalid period: {period!r}")

    if window <= timedelta(0):
        raise ValidationError("Period must be positive", {"period": str(period)})
    return window


def window_start(period: PeriodLike, now: datetime) -> datetime:
    return now - parse_period(period)


def calendar_days(period: PeriodLike, now: datetime) -> List[date]:
    """The last N calendar days ending today, oldest first, where N is the window in days rounded up.

    A "7 days" window yields exactly seven dates with today last.
    """
    window = parse_period(period)
    day_count = max(1, math.ceil(window.total_seconds() / 86400))
    today = now.date()
    return [today - timedelta(days=offset) for offset in range(day_count - 1, -1, -1)]


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, datetime.min.time())
    return start, start + timedelta(days=1)
