from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def naive_utc_now() -> datetime:
    """Current UTC time without tzinfo, matching how DATETIME columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    # Naive input is taken to be UTC already
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def business_date(dt: datetime, zone_name: str) -> date:
    """
    Calendar date of `dt` in the business timezone.

    Expiry dates are plain dates entered by office staff, so "today" has to be
    their today, not the UTC one. A naive `dt` is treated as UTC.

    Args:
        dt: Datetime to convert
        zone_name: IANA timezone name, e.g. "Asia/Kolkata"
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(ZoneInfo(zone_name)).date()
