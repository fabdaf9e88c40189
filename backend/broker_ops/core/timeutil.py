"""ISO-8601 helpers. All comparisons run on epoch milliseconds."""
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

MINUTE_MS = 60_000
HOUR_MS = 60 * MINUTE_MS


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 instant; naive values are read as UTC. Returns None when unparsable."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_ms(value: Optional[str]) -> float:
    """
    Epoch milliseconds for an ISO string.

    Missing or malformed input maps to +inf so a bad timestamp reads as
    "infinitely far in the future" and never as late.
    """
    dt = parse_iso_datetime(value)
    if dt is None:
        return math.inf
    return to_ms(dt)


def to_ms(dt: datetime) -> float:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp() * 1000.0


def to_iso(dt: datetime) -> str:
    """Millisecond-precision UTC ISO string, e.g. 2026-10-19T14:05:00.000Z."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return f"{dt:%Y-%m-%dT%H:%M:%S}.{dt.microsecond // 1000:03d}Z"


def add_minutes(dt: datetime, minutes: float) -> datetime:
    return dt + timedelta(minutes=minutes)


def within_next_hours(value: Optional[str], hours: float, now: datetime) -> bool:
    """True when the instant falls in [now, now + hours]."""
    target = parse_iso_ms(value)
    if math.isinf(target):
        return False
    now_ms = to_ms(now)
    return now_ms <= target <= now_ms + hours * HOUR_MS


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """IANA zone for local-day views; unknown or empty names fall back to UTC."""
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def same_local_day(value: Optional[str], now: datetime, tz: tzinfo = timezone.utc) -> bool:
    """True when the instant falls on the same calendar day as `now` in `tz`."""
    dt = parse_iso_datetime(value)
    if dt is None:
        return False
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return dt.astimezone(tz).date() == now.astimezone(tz).date()
