import secrets
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from .config import settings


def utcnow() -> datetime:
    """UTC-aware 'now' to keep comparisons consistent with timestamptz from Postgres."""
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything we store is UTC
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def campaign_tz() -> ZoneInfo:
    return ZoneInfo(settings.campaign_timezone)


def local_date(dt: datetime) -> date:
    """Calendar date of ``dt`` in the campaign timezone."""
    return as_utc(dt).astimezone(campaign_tz()).date()


def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    """[start, end) of the campaign-timezone day containing ``now``, in UTC."""
    tz = campaign_tz()
    day = local_date(now)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def whole_days_between(earlier: datetime, later: datetime) -> int:
    return (as_utc(later) - as_utc(earlier)) // timedelta(days=1)


def normalize_phone(p: str) -> str:
    return "".join(ch for ch in p if ch.isdigit())


def random_digits(length: int) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))
