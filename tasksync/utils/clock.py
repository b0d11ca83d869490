"""Datetime helpers shared by the sync core."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize aware datetimes to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def same_instant(left: Optional[datetime], right: Optional[datetime]) -> bool:
    """Compare two datetimes at second precision (calendar APIs drop microseconds)."""
    left = to_naive_utc(left)
    right = to_naive_utc(right)
    if left is None or right is None:
        return left is right
    return left.replace(microsecond=0) == right.replace(microsecond=0)


def latest(*values: Optional[datetime]) -> Optional[datetime]:
    """Latest of the given datetimes, ignoring ``None``."""
    present = [to_naive_utc(v) for v in values if v is not None]
    return max(present) if present else None
