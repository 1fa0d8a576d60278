"""Profile merge rules.

Incoming data overwrites existing keys, with two exceptions: identity fields
already filled in the existing profile are kept, and mark fields only ever go
from false to true.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from servicekit.timezone import ensure_utc, now_utc
from user_migration.core.fields import deep_coerce_timestamps

IDENTITY_FIELDS = ("email", "fullName", "displayName")
MARK_FIELDS = ("isTrusted", "isAdmin")
CREDENTIAL_KEYS = frozenset({"password", "password_hash", "passwordHash"})
TIMESTAMP_STAMP_FIELDS = ("lastUpdated", "updatedAt")


def is_filled(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def strip_credentials(document: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in document.items() if key not in CREDENTIAL_KEYS}


def merge_profiles(
    existing_profile: Mapping[str, Any] | None,
    incoming: Mapping[str, Any],
    mark_fields: Iterable[str] = MARK_FIELDS,
    *,
    provenance_key: str | None = None,
    source: Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    existing = dict(existing_profile or {})
    incoming_clean = deep_coerce_timestamps(incoming)

    merged: dict[str, Any] = {**existing, **incoming_clean}

    for key in IDENTITY_FIELDS:
        if is_filled(existing.get(key)):
            merged[key] = existing[key]
        elif key in incoming_clean:
            merged[key] = incoming_clean[key]

    for key in mark_fields:
        if incoming_clean.get(key):
            merged[key] = incoming_clean[key]
        elif existing.get(key):
            merged[key] = existing[key]

    stamp = ensure_utc(now or now_utc()).isoformat()
    for key in TIMESTAMP_STAMP_FIELDS:
        merged[key] = stamp

    if provenance_key:
        embedded = deep_coerce_timestamps(source if source is not None else incoming)
        merged[provenance_key] = strip_credentials(embedded)

    return strip_credentials(merged)
