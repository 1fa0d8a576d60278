from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from servicekit.timezone import now_utc_iso

NO_DOC_ID = "N/A"


@dataclass(frozen=True)
class SourceDocument:
    doc_id: str
    data: Mapping[str, Any]


@dataclass
class CanonicalUser:
    user_id: str
    email: str
    full_name: str
    role: str
    status: str = "pending"
    profile: dict[str, Any] = field(default_factory=dict)
    password_hash: str | None = field(default=None, repr=False)
    password_reset_required: bool = False
    created_at: str = field(default_factory=now_utc_iso)
    updated_at: str = field(default_factory=now_utc_iso)


@dataclass
class ContentDocument:
    collection: str
    doc_id: str
    data: dict[str, Any]
    attributes: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class MergeConflict:
    collection: str
    doc_id: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"collection": self.collection, "doc_id": self.doc_id, "reason": self.reason}


class OutcomeStatus(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    UPSERTED = "upserted"
    SKIPPED = "skipped"
    FAILED = "failed"


_SUCCESS_STATUSES = frozenset({OutcomeStatus.CREATED, OutcomeStatus.UPDATED, OutcomeStatus.UPSERTED})


@dataclass(frozen=True)
class RecordOutcome:
    collection: str
    doc_id: str
    status: OutcomeStatus
    user_id: str | None = None
    conflict: MergeConflict | None = None
    anomalies: tuple[MergeConflict, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.status in _SUCCESS_STATUSES


@dataclass
class PassResult:
    collection: str
    migrated_count: int = 0
    skipped_count: int = 0
    conflicts: list[MergeConflict] = field(default_factory=list)
    anomalies: list[MergeConflict] = field(default_factory=list)

    def record(self, outcome: RecordOutcome) -> None:
        if outcome.succeeded:
            self.migrated_count += 1
        elif outcome.status == OutcomeStatus.SKIPPED:
            self.skipped_count += 1
        if outcome.conflict is not None:
            self.conflicts.append(outcome.conflict)
        self.anomalies.extend(outcome.anomalies)


@dataclass
class MigrationSummary:
    migrated_count: int = 0
    errors: list[MergeConflict] = field(default_factory=list)
    anomalies: list[MergeConflict] = field(default_factory=list)
    passes: list[PassResult] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def exit_code(self) -> int:
        return 1 if self.error_count > 0 else 0

    def add_pass(self, result: PassResult) -> None:
        self.passes.append(result)
        self.migrated_count += result.migrated_count
        self.errors.extend(result.conflicts)
        self.anomalies.extend(result.anomalies)

    def to_dict(self) -> dict[str, Any]:
        return {
            "migrated_count": self.migrated_count,
            "error_count": self.error_count,
            "errors": [item.to_dict() for item in self.errors],
            "anomalies": [item.to_dict() for item in self.anomalies],
        }
