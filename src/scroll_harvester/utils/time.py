from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

_RELATIVE = re.compile(r"^\s*(\d+)\s*(minute|hour|day|week)s?\s*(ago)?\s*$", re.IGNORECASE)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Get current UTC time in ISO format."""
    return utc_now().isoformat(timespec="seconds")


def from_unix(value: Any) -> Optional[datetime]:
    """Convert a unix timestamp (seconds, possibly a string) to UTC."""
    if value is None or value == "":
        return None
    try:
        return datetime.fromtimestamp(int(float(value)), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def parse_date_bound(value: Any, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse a time-window bound.

    Accepts datetimes, ISO dates/datetimes ("2024-01-31", "2024-01-31T10:00:00Z")
    and relative spans counted back from now ("7 days", "12 hours ago").
    Naive values are taken as UTC.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    text = str(value).strip()
    m = _RELATIVE.match(text)
    if m:
        amount = int(m.group(1))
        unit = m.group(2).lower()
        delta = {
            "minute": timedelta(minutes=amount),
            "hour": timedelta(hours=amount),
            "day": timedelta(days=amount),
            "week": timedelta(weeks=amount),
        }[unit]
        return (now or utc_now()) - delta

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ValueError(f"Unrecognised date bound: {value!r}") from e
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
