"""Date/time parsing for the formats emitted by upstream feeds."""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from dateutil import parser as dateutil_parser

from .errors import DateParseError, UnknownTimezoneCode

# Amtrak feed timezone codes: Pacific, Mountain, Central, Eastern
AMTRAK_TZ_CODES = {
    "P": "America/Los_Angeles",
    "M": "America/Denver",
    "C": "America/Chicago",
    "E": "America/New_York",
}

HR24_FORMAT = "%m/%d/%Y %H:%M:%S"  # MM/DD/YYYY HH:MM:SS
HR12_FORMAT = "%m/%d/%Y %I:%M:%S %p"  # M/D/YYYY h:MM:SS AM/PM

_MERIDIEMS = {"AM", "PM"}


def resolve_timezone(tz_code: str) -> str:
    """
    Map a feed timezone code to an IANA zone name.

    Args:
        tz_code: Feed-local code (e.g. "E"). IANA names are passed through.

    Returns:
        IANA zone name.

    Raises:
        UnknownTimezoneCode: If the code is not mapped.
    """
    if tz_code in AMTRAK_TZ_CODES:
        return AMTRAK_TZ_CODES[tz_code]
    if tz_code and "/" in tz_code:
        return tz_code
    raise UnknownTimezoneCode(tz_code)


def parse_datetime(value: str, tz_code: str, hr24: bool = True) -> datetime:
    """
    Parse an Amtrak-style date string into an aware datetime.

    The feed uses two layouts: "MM/DD/YYYY HH:MM:SS" for station times and
    "M/D/YYYY h:MM:SS AM/PM" for train timestamps. A trailing zone
    abbreviation on the 12-hour layout is ignored; the zone always comes
    from tz_code.

    Args:
        value: Date string from the feed.
        tz_code: Feed timezone code or IANA name.
        hr24: True for the 24-hour layout, False for the 12-hour one.

    Returns:
        Timezone-aware datetime.

    Raises:
        UnknownTimezoneCode: If tz_code is not mapped.
        DateParseError: If value does not match the layout.
    """
    tz_name = resolve_timezone(tz_code)
    if not isinstance(value, str) or not value.strip():
        raise DateParseError(f"Empty date string: {value!r}")

    text = " ".join(value.split())
    if hr24:
        fmt = HR24_FORMAT
    else:
        fmt = HR12_FORMAT
        parts = text.split(" ")
        if len(parts) == 4 and parts[3].isalpha() and parts[3].upper() not in _MERIDIEMS:
            text = " ".join(parts[:3])

    try:
        parsed = datetime.strptime(text, fmt)
    except ValueError as e:
        raise DateParseError(f"Could not parse {value!r}: {e}") from e

    return parsed.replace(tzinfo=ZoneInfo(tz_name))


def parse_iso(value: str, default_tz: Optional[str] = None) -> datetime:
    """
    Parse an ISO-8601 timestamp.

    Naive values are interpreted in default_tz, or UTC when none is given.

    Raises:
        DateParseError: If value is not a valid ISO-8601 string.
    """
    if not isinstance(value, str) or not value.strip():
        raise DateParseError(f"Empty timestamp: {value!r}")
    try:
        parsed = dateutil_parser.isoparse(value.strip())
    except (ValueError, OverflowError) as e:
        raise DateParseError(f"Could not parse {value!r}: {e}") from e

    if parsed.tzinfo is None:
        tzinfo = ZoneInfo(default_tz) if default_tz else timezone.utc
        parsed = parsed.replace(tzinfo=tzinfo)
    return parsed


def delay_minutes(scheduled: Optional[datetime], best: Optional[datetime]) -> Optional[int]:
    """Signed minutes between the best-known and scheduled time (positive = late)."""
    if scheduled is None or best is None:
        return None
    return round((best - scheduled).total_seconds() / 60)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
