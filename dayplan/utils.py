from datetime import datetime, timezone
import logging
import secrets
import zoneinfo

logger = logging.getLogger(__name__)

CODE_MIN = 100000
CODE_MAX = 999999


def now_utc() -> datetime:
    """Return timezone-aware current UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """Normalize a datetime to aware UTC.

    SQLite hands datetimes back without tzinfo; everything we store is UTC,
    so a naive value is interpreted as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def generate_numeric_code() -> str:
    """Return a 6-digit code drawn uniformly from 100000..999999."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into aware UTC.

    Accepts a trailing 'Z' and date-only strings. Raises ValueError on
    anything else.
    """
    s = value.strip()
    if s.endswith('Z') or s.endswith('z'):
        s = s[:-1] + '+00:00'
    dt = datetime.fromisoformat(s)
    return as_utc(dt)


def isoformat_utc(dt: datetime | None) -> str | None:
    """Render a stored datetime as ISO-8601 with a 'Z' suffix."""
    if dt is None:
        return None
    return as_utc(dt).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def resolve_timezone(tz_name: str | None) -> zoneinfo.ZoneInfo:
    """Look up an IANA timezone, falling back to UTC when unknown."""
    if not tz_name:
        return zoneinfo.ZoneInfo('UTC')
    try:
        return zoneinfo.ZoneInfo(tz_name)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        logger.warning("unknown timezone %s; using UTC", tz_name)
        return zoneinfo.ZoneInfo('UTC')


def normalize_email(email: str | None) -> str | None:
    if email is None:
        return None
    e = email.strip().lower()
    return e or None
