"""Shared days-back window utilities."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

MAX_DAYS_BACK = 365


def window_start(days_back: int, *, now: Optional[datetime] = None) -> datetime:
    """
    Return the inclusive lower bound for a `days_back` listing.

    0 means "today only" (midnight UTC of the current day); any other value is a rolling
    window of `days_back` x 24h ending now.
    """
    end = now or datetime.now(timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    end = end.astimezone(timezone.utc)
    d = max(0, min(int(days_back), MAX_DAYS_BACK))
    if d == 0:
        return end.replace(hour=0, minute=0, second=0, microsecond=0)
    return end - timedelta(days=d)
