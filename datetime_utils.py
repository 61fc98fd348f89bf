from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Optional


UTC = timezone.utc
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_FRACTION = re.compile(r"\.(\d+)")


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values (SQLite drops tzinfo) or convert aware ones."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def days_ago(days: int, *, now: Optional[datetime] = None) -> datetime:
    return (ensure_utc(now) or utc_now()) - timedelta(days=days)


def parse_rfc3339(s: Optional[str]) -> Optional[datetime]:
    """Parse a RFC3339 string and return a timezone-aware UTC datetime.

    Google returns ``updated``/``completed``/``due`` with millisecond
    fractions (``2024-05-01T10:00:00.000Z``); malformed input yields ``None``.
    """

    value = str(s or "").strip()
    if not value:
        return None
    if value[-1] in "zZ":
        value = value[:-1] + "+00:00"
    # fromisoformat before 3.11 only takes 3 or 6 fractional digits
    value = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None

    return ensure_utc(dt)


def to_rfc3339_utc(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime to RFC3339 in UTC with millisecond precision."""

    value = ensure_utc(dt)
    if value is None:
        return None
    millis = value.microsecond // 1000
    return value.strftime("%Y-%m-%dT%H:%M:%S") + f".{millis:03d}Z"


def same_day(left: Optional[datetime], right: Optional[datetime]) -> bool:
    """Compare two due dates by UTC calendar day; Google Tasks drops the time part."""
    a = ensure_utc(left)
    b = ensure_utc(right)
    if a is None or b is None:
        return a is None and b is None
    return a.date() == b.date()


__all__ = [
    "UTC",
    "EPOCH",
    "days_ago",
    "ensure_utc",
    "parse_rfc3339",
    "same_day",
    "to_rfc3339_utc",
    "utc_now",
]
