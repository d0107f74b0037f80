from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, returning ``None`` if it is not one.

    Naive timestamps are read as UTC.
    """
    if not isinstance(value, str) or not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def seconds_until(moment: datetime, now: Optional[datetime] = None) -> float:
    """Non-negative number of seconds from ``now`` until ``moment``."""
    now = now or datetime.now(timezone.utc)
    return max(0.0, (moment - now).total_seconds())
