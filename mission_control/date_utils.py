"""Shared timestamp normalization helpers."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

# Epoch values above this are milliseconds (year 5138 in seconds).
_EPOCH_MS_THRESHOLD = 100_000_000_000


def _format_datetime_utc(value: datetime) -> str | None:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        dt = dt.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        # Offsets that push year 1 or year 9999 out of range.
        return None
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y/%m/%d %H:%M:%S"):
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def _from_epoch(value: float) -> datetime | None:
    if value <= 0:
        return None
    seconds = value / 1000.0 if value >= _EPOCH_MS_THRESHOLD else float(value)
    try:
        return datetime.fromtimestamp(seconds, timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def now_iso() -> str:
    return _format_datetime_utc(datetime.now(timezone.utc))


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def to_iso(value: Any) -> str | None:
    """Normalize ISO strings, epoch seconds/milliseconds or datetimes.

    Returns a canonical ``YYYY-MM-DDTHH:MM:SS.mmmZ`` string so stored
    timestamps order lexically, or ``None`` when the value is unusable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _format_datetime_utc(value)
    if isinstance(value, (int, float)):
        parsed = _from_epoch(float(value))
        return _format_datetime_utc(parsed) if parsed else None
    if isinstance(value, str):
        token = value.strip()
        if not token:
            return None
        if token.isdigit():
            parsed = _from_epoch(float(token))
        else:
            parsed = _parse_datetime_token(token)
        return _format_datetime_utc(parsed) if parsed else None
    return None


def iso_to_epoch_ms(value: str | None) -> int | None:
    token = to_iso(value)
    if not token:
        return None
    parsed = _parse_datetime_token(token)
    if parsed is None:
        return None
    return int(parsed.timestamp() * 1000)


def elapsed_ms(started_at: str | None, now: str | None = None) -> int | None:
    start = iso_to_epoch_ms(started_at)
    if start is None:
        return None
    end = iso_to_epoch_ms(now) if now else now_ms()
    if end is None:
        return None
    return max(0, end - start)

