# Overview: UTC clock and ISO-8601 helpers; the database stores naive UTC datetimes.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    ISO-8601 text -> naive UTC datetime.

    Blank input gives None. A value without an offset ("2026-01-18" or
    "2026-01-18T10:00") is taken as UTC; "Z" and "+03:00" style offsets are
    converted. Raises ValueError on anything fromisoformat rejects.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Naive-UTC datetime -> "2026-01-18T10:00:00Z" (seconds precision)."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"


def start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def day_key(dt: datetime) -> str:
    """Per-day report bucket (UTC calendar day)."""
    return dt.strftime("%Y-%m-%d")
