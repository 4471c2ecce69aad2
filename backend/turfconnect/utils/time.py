from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_naive_to_aware(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc)


def venue_today(tz_name: str) -> date:
    """Calendar date at the venue; slot dates are local to the turf."""
    return datetime.now(ZoneInfo(tz_name)).date()
