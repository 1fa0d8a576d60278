from __future__ import annotations

from datetime import datetime, timezone

UTC_ZONE = timezone.utc


def now_utc() -> datetime:
    return datetime.now(UTC_ZONE)


def now_utc_iso() -> str:
    return now_utc().isoformat()


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC_ZONE)
    return value.astimezone(UTC_ZONE)
