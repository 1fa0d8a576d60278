"""Field normalization for loosely-typed legacy documents.

Legacy collections name the same logical field in several ways
(``fullName``/``displayName``/``name``...) and carry timestamps as native
datetimes, ISO strings or document-store timestamp objects. Lookups go through
the ordered ``FIELD_VARIANTS`` table so that re-running a migration always
picks the same source key.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
import logging
from typing import Any

from servicekit.timezone import UTC_ZONE, ensure_utc

logger = logging.getLogger(__name__)

FIELD_VARIANTS: dict[str, tuple[str, ...]] = {
    "email": ("email", "userEmail", "user_email", "profile.email"),
    "full_name": ("fullName", "displayName", "name", "userName", "profile.fullName", "profile.displayName"),
    "legacy_id": ("userId", "user_id", "uid"),
    "role": ("role", "profile.role"),
    "status": ("status", "state"),
    "created_at": ("createdAt", "created_at"),
    "updated_at": ("updatedAt", "updated_at"),
    "added_at": ("addedAt", "added_at"),
    "moved_to_trusted_at": ("movedToTrustedAt", "moved_to_trusted_at"),
    "submitted_at": ("submittedAt", "submitted_at"),
    "reviewed_at": ("reviewedAt", "reviewed_at"),
    "last_action_at": ("lastActionAt", "last_action_at"),
    "last_document_submission_date": ("lastDocumentSubmissionDate", "last_document_submission_date"),
    "application_id": ("applicationId", "application_id"),
    "application_type": ("applicationType", "application_type", "type"),
    "action_by": ("actionBy", "action_by"),
    "action_type": ("actionType", "action_type"),
    "action_reason": ("actionReason", "action_reason"),
    "reviewed_by": ("reviewedBy", "reviewed_by"),
    "last_modified_by": ("lastModifiedBy", "last_modified_by"),
    "has_pending_document_requests": ("hasPendingDocumentRequests", "has_pending_document_requests"),
    "place_name": ("placeName", "place_name", "name"),
    "label": ("label",),
    "description": ("description",),
    "value": ("value",),
    "order_index": ("orderIndex", "order_index"),
    "is_active": ("isActive", "is_active"),
}


class _Absent:
    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Any = _Absent()


def _lookup(record: Mapping[str, Any], key: str) -> Any:
    current: Any = record
    for part in key.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return ABSENT
        current = current[part]
    return current


def resolve_field(record: Mapping[str, Any], canonical_name: str) -> Any:
    variants = FIELD_VARIANTS.get(canonical_name)
    if variants is None:
        raise KeyError(f"unknown canonical field: {canonical_name}")
    for key in variants:
        value = _lookup(record, key)
        if value is ABSENT or value is None:
            continue
        return value
    return ABSENT


def resolve_or(record: Mapping[str, Any], canonical_name: str, default: Any = None) -> Any:
    value = resolve_field(record, canonical_name)
    return default if value is ABSENT else value


def normalize_email(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized or None


@dataclass(frozen=True)
class StoreTimestamp:
    """Timestamp object as stored by the legacy document database."""

    seconds: int
    nanoseconds: int = 0

    def to_datetime(self) -> datetime:
        base = datetime.fromtimestamp(self.seconds, tz=UTC_ZONE)
        return base + timedelta(microseconds=self.nanoseconds // 1000)

    @classmethod
    def from_datetime(cls, value: datetime) -> "StoreTimestamp":
        aware = ensure_utc(value)
        epoch = datetime(1970, 1, 1, tzinfo=UTC_ZONE)
        delta = aware - epoch
        seconds = delta.days * 86400 + delta.seconds
        return cls(seconds=seconds, nanoseconds=delta.microseconds * 1000)


class TimestampKind(Enum):
    ABSENT = "absent"
    NATIVE = "native"
    ISO_STRING = "iso_string"
    WRAPPED = "wrapped"
    OPAQUE = "opaque"


def _parse_iso(value: str) -> datetime | None:
    candidate = value.strip()
    if not candidate:
        return None
    try:
        return datetime.fromisoformat(candidate.replace("Z", "+00:00"))
    except ValueError:
        return None


def classify_timestamp(value: Any) -> TimestampKind:
    if value is None or value is ABSENT:
        return TimestampKind.ABSENT
    if isinstance(value, StoreTimestamp):
        return TimestampKind.WRAPPED
    if isinstance(value, datetime):
        return TimestampKind.NATIVE
    if isinstance(value, str):
        if not value.strip():
            return TimestampKind.ABSENT
        if _parse_iso(value) is not None:
            return TimestampKind.ISO_STRING
    return TimestampKind.OPAQUE


def coerce_timestamp(value: Any) -> datetime | None:
    kind = classify_timestamp(value)
    if kind is TimestampKind.ABSENT:
        return None
    if kind is TimestampKind.NATIVE:
        return ensure_utc(value)
    if kind is TimestampKind.ISO_STRING:
        parsed = _parse_iso(value)
        return ensure_utc(parsed) if parsed is not None else None
    if kind is TimestampKind.WRAPPED:
        try:
            return value.to_datetime()
        except (OverflowError, OSError, ValueError):
            logger.warning("timestamp_unparseable", extra={"value": repr(value)})
            return None
    logger.warning("timestamp_unparseable", extra={"value": repr(value)[:200]})
    return None


def to_iso(value: Any) -> str | None:
    coerced = coerce_timestamp(value)
    return coerced.isoformat() if coerced is not None else None


def deep_coerce_timestamps(document: Any) -> Any:
    if isinstance(document, StoreTimestamp):
        return to_iso(document)
    if isinstance(document, datetime):
        return ensure_utc(document).isoformat()
    if isinstance(document, Mapping):
        return {str(key): deep_coerce_timestamps(value) for key, value in document.items()}
    if isinstance(document, (list, tuple)):
        return [deep_coerce_timestamps(item) for item in document]
    return document
