from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time in UTC with tzinfo stripped; every stored timestamp uses this form."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    ISO-8601 string -> UTC-naive datetime.

    Blank input gives None. Offsets (including a trailing "Z") are converted
    to UTC; a value without an offset is taken to already be UTC. Raises
    ValueError for anything fromisoformat rejects.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"
    return _as_utc_naive(datetime.fromisoformat(text))


def is_date_only(value: Optional[str]) -> bool:
    """True for a bare calendar date such as "2024-03-01"."""
    if not value:
        return False
    try:
        date.fromisoformat(value.strip())
    except ValueError:
        return False
    return True


def parse_range_end(value: Optional[str]) -> Optional[datetime]:
    """
    Parse the inclusive end of a date range.

    A date without a time component means the whole day, so it is pushed to
    23:59:59.999999.
    """
    if is_date_only(value):
        return datetime.combine(date.fromisoformat(value.strip()), time.max)
    return parse_iso_datetime(value)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO-8601 in UTC with a "Z" suffix; naive input counts as UTC."""
    if dt is None:
        return None
    stamp = _as_utc_naive(dt).replace(microsecond=0)
    return stamp.isoformat() + "Z"
