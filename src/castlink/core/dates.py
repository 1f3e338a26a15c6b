"""Business-day helpers.

Challenges roll over at midnight in the configured timezone (US Eastern by
default), not at UTC midnight.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from .config import settings

ISO_DAY_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")


def business_day(moment: Optional[datetime] = None, tz_name: Optional[str] = None) -> date:
    """Return the calendar day of ``moment`` in the challenge timezone."""

    if moment is None:
        moment = datetime.now(timezone.utc)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    zone = ZoneInfo(tz_name or settings.challenge_timezone)
    return moment.astimezone(zone).date()


def shift_day(day: date, offset: int) -> date:
    return day + timedelta(days=offset)


def yesterday(moment: Optional[datetime] = None) -> date:
    return shift_day(business_day(moment), -1)


def tomorrow(moment: Optional[datetime] = None) -> date:
    return shift_day(business_day(moment), 1)


def parse_day(value: str) -> date:
    """Parse a strict ``YYYY-MM-DD`` string."""

    if not ISO_DAY_PATTERN.fullmatch(value):
        raise ValueError(f"Invalid ISO date string: {value}")
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValueError(f"Invalid ISO date string: {value}") from exc
