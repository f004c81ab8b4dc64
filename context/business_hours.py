"""
Business-hours check against an organization's weekly schedule.
"""

import logging
from datetime import datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from .models import BusinessHoursConfig

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


def is_within_business_hours(config: BusinessHoursConfig, now: Optional[datetime] = None) -> bool:
    """
    True when ``now`` falls inside today's window in the org's timezone.

    Both bounds are inclusive at minute resolution. Disabled hours always
    count as open, a day with no entry counts as closed, and a broken
    config (bad timezone, malformed time) counts as open.
    """
    if not config.enabled:
        return True
    try:
        tz = ZoneInfo(config.timezone)
        if now is None:
            now = datetime.now(timezone.utc)
        elif now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        local = now.astimezone(tz)

        window = config.schedule.get(WEEKDAYS[local.weekday()])
        if not window:
            return False

        current = time(local.hour, local.minute)
        return _parse_hhmm(window["start"]) <= current <= _parse_hhmm(window["end"])
    except Exception as e:
        logger.warning(f"Business hours check failed, assuming open: {e}")
        return True
