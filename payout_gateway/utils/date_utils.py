"""Date manipulation utilities"""

import math
from datetime import datetime, timezone


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def minutes_between(earlier: datetime, later: datetime) -> float:
    """Elapsed minutes from earlier to later (negative if later is before earlier)"""
    return (ensure_aware(later) - ensure_aware(earlier)).total_seconds() / 60


def remaining_cooldown_minutes(last_at: datetime, now: datetime, cooldown_minutes: int) -> int:
    """Whole minutes left in a cooldown window, rounded up; 0 once it has elapsed"""
    elapsed = minutes_between(last_at, now)
    if elapsed >= cooldown_minutes:
        return 0
    return math.ceil(cooldown_minutes - elapsed)
