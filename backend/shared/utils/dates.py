"""Timestamp helpers shared by adapters and the merge engine."""
from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_instant(value: Any) -> datetime | None:
    """
    Best-effort parser for the timestamp shapes upstreams send.

    Supports datetime/date objects, epoch seconds, and ISO strings with a
    trailing "Z", an offset, or no zone at all (taken as UTC). Returns None
    instead of raising on bad input.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time(0, 0), tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        raw = value.strip().replace("Z", "+00:00")
        if " " in raw and "T" not in raw:
            raw = raw.replace(" ", "T", 1)
        try:
            return ensure_utc(datetime.fromisoformat(raw))
        except ValueError:
            return None
    return None


def iso_date_only(value: datetime | None) -> str:
    """UTC calendar date as YYYY-MM-DD, or "" when unknown."""
    if value is None:
        return ""
    return ensure_utc(value).date().isoformat()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
