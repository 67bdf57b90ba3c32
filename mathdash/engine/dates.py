"""
Calendar-day helpers for streak tracking. DateKeys are YYYY-MM-DD strings
naming a day in the reference timezone.
"""
import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Asia/Jerusalem"

# Both days are pinned to noon UTC before differencing, so a 23h or 25h
# local day across a DST switch still counts as one day.
_ANCHOR = time(12, 0, tzinfo=timezone.utc)
_DAY_SECONDS = 24 * 60 * 60

_DATE_KEY_RE = re.compile(r"\d{4}-\d{2}-\d{2}\Z", re.ASCII)


def resolve_timezone(name: str | None) -> ZoneInfo:
    """Return the named zone, or the default zone with a warning if unknown."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError, OSError) as e:
            # OSError covers names that hit a directory of the zone database, e.g. "Europe"
            logger.warning("Invalid timezone %r, falling back to %s: %s", name, DEFAULT_TIMEZONE, e)
    return ZoneInfo(DEFAULT_TIMEZONE)


def date_key_for(instant: datetime, tz: ZoneInfo) -> str:
    """Render an instant as a DateKey in `tz`. Naive instants are taken as UTC."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(tz).date().isoformat()


def current_date_key(reference_timezone: str | None, now: datetime | None = None) -> str:
    tz = resolve_timezone(reference_timezone)
    return date_key_for(now or datetime.now(timezone.utc), tz)


def parse_date_key(key: str | None) -> date | None:
    """Parse a DateKey; anything malformed or empty yields None."""
    if not isinstance(key, str) or not _DATE_KEY_RE.match(key):
        return None
    try:
        return date.fromisoformat(key)
    except ValueError:
        return None


def _noon(d: date) -> datetime:
    return datetime.combine(d, _ANCHOR)


def days_between(start: str | None, end: str | None) -> int:
    """Signed number of calendar days from `start` to `end`; 0 if either is invalid."""
    start_day = parse_date_key(start)
    end_day = parse_date_key(end)
    if start_day is None or end_day is None:
        return 0
    seconds = (_noon(end_day) - _noon(start_day)).total_seconds()
    return round(seconds / _DAY_SECONDS)


def is_consecutive_day(previous: str | None, current: str | None) -> bool:
    if parse_date_key(previous) is None or parse_date_key(current) is None:
        return False
    return days_between(previous, current) == 1


def is_same_day(a: str | None, b: str | None) -> bool:
    day_a = parse_date_key(a)
    return day_a is not None and day_a == parse_date_key(b)


def next_date_key(key: str) -> str:
    day = parse_date_key(key)
    if day is None:
        raise ValueError(f"invalid date key: {key!r}")
    return (day + timedelta(days=1)).isoformat()
