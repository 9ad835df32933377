from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from core.config import settings


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def reference_tz() -> ZoneInfo:
    return ZoneInfo(settings.STREAK_TIMEZONE)


def today() -> date:
    """Current calendar date in the reference timezone."""
    return datetime.now(reference_tz()).date()


def day_start_utc(day: date) -> datetime:
    """Midnight of ``day`` in the reference timezone, as naive UTC."""
    local_midnight = datetime.combine(day, time.min, tzinfo=reference_tz())
    return local_midnight.astimezone(timezone.utc).replace(tzinfo=None)
