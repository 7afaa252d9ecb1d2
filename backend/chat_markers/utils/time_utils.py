from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current timezone-aware UTC time."""

    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Render a datetime the way marker timestamps are stored (ms precision, Z suffix)."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def utc_now_iso() -> str:
    return to_iso(utc_now())


def epoch_millis(value: datetime | None = None) -> int:
    return int((value or utc_now()).timestamp() * 1000)
