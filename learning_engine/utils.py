"""Utility functions for sanitization, validation and time handling."""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import bleach

Timestamp = Union[datetime, str, None]


def sanitize_plain_text(text: Optional[str]) -> Optional[str]:
    """Strip all HTML from staff-entered text (intervention reasons, action plans).

    Returns None when nothing is left after stripping.
    """
    if text is None:
        return None
    sanitized = bleach.clean(text, tags=[], strip=True).strip()
    return sanitized or None


def percent(part: int, whole: int) -> int:
    """Integer percentage rounded half up, 0 when ``whole`` is 0."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


def validate_pass_threshold(threshold: int) -> int:
    """Validate that a pass threshold is within 0-100.

    Raises:
        ValueError: If the threshold is out of range
    """
    if isinstance(threshold, bool) or not isinstance(threshold, int):
        raise ValueError(f"Pass threshold must be an integer, got {threshold!r}")
    if threshold < 0 or threshold > 100:
        raise ValueError(f"Pass threshold {threshold} out of range [0, 100]")
    return threshold


def clamp(value: float, low: int = 0, high: int = 100) -> int:
    return int(max(low, min(high, round(value))))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: Timestamp) -> Optional[datetime]:
    """Coerce a datetime or ISO-8601 string to an aware UTC datetime.

    Naive values are treated as UTC. Unparseable strings give None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(now: datetime, then: datetime) -> int:
    """Whole days elapsed from ``then`` to ``now`` (floored)."""
    return (now - then) // timedelta(days=1)
