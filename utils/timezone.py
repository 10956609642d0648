"""UTC-everywhere time handling, plus civil-day keys for calendar arithmetic.

Instants (payment times, due dates, audit timestamps) are always UTC datetimes.
Calendar days (class occurrences, paid-through dates) are day keys: plain
``datetime.date`` values taken in one fixed civil timezone, so that calendar
walks are deterministic regardless of server locale or time-of-day noise.
"""

from datetime import date, datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_CIVIL_TIMEZONE = "Australia/Brisbane"

DayKey = date


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def get_zone(tz_name: str) -> ZoneInfo:
    """Resolve an IANA timezone name. Raises ValueError for unknown names."""
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {tz_name}")


# =============================================================================
# DAY KEYS
# =============================================================================


def to_day_key(value: date | datetime | str, tz: tzinfo | str = DEFAULT_CIVIL_TIMEZONE) -> DayKey:
    """
    Normalise a date, datetime or ISO string to a civil day key.

    Aware datetimes are converted into ``tz`` before the date is taken.
    Naive datetimes and plain dates are taken as already civil.

    Args:
        value: Input to normalise
        tz: Civil timezone (tzinfo or IANA name). Injectable so tests can
            fix it deterministically.
    """
    if isinstance(tz, str):
        tz = get_zone(tz)

    if isinstance(value, str):
        if len(value) == 10:
            return date.fromisoformat(value)
        value = datetime.fromisoformat(value)

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.date()
        return value.astimezone(tz).date()

    return value


def today_key(tz: tzinfo | str = DEFAULT_CIVIL_TIMEZONE) -> DayKey:
    """Today's day key in the civil timezone."""
    return to_day_key(now_utc(), tz)


def day_key_str(day: DayKey | None) -> str | None:
    """ISO rendering of a day key (``YYYY-MM-DD``), None passes through."""
    return day.isoformat() if day is not None else None


def day_of_week(day: DayKey) -> int:
    """Day of week with Monday = 0 ... Sunday = 6."""
    return day.weekday()
