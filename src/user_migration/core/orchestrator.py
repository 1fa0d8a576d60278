from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
import logging
from typing import Any

from servicekit.timezone import now_utc
from user_migration.core.exceptions import CollectionNotFoundError, RecordRejectedError
from user_migration.core.fields import (
    ABSENT,
    FIELD_VARIANTS,
    TimestampKind,
    classify_timestamp,
    deep_coerce_timestamps,
    normalize_email,
    resolve_field,
    resolve_or,
    to_iso,
)
from user_migration.core.identity import IdentityResolver, canonical_user_id
from user_migration.core.merge import MARK_FIELDS, is_filled, merge_profiles
from user_migration.core.models import (
    NO_DOC_ID,
    CanonicalUser,
    ContentDocument,
    MergeConflict,
    OutcomeStatus,
    PassResult,
    RecordOutcome,
    SourceDocument,
)
from user_migration.core.policies import DocumentCollectionPolicy, UserCollectionPolicy, policy_for
from user_migration.core.store import CanonicalStore
from user_migration.passwords import generate_placeholder_credential
from user_migration.roles import normalize_role, promote_role
from user_migration.sources.base import LegacySourceReader

logger = logging.getLogger(__name__)

_DEFAULT_SOURCE_ROLE = "user"
_DEFAULT_STATUS = "pending"


class _RecordContext:
    def __init__(self, collection: str, doc_id: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        self.anomalies: list[MergeConflict] = []

    def timestamp(self, value: Any, field_name: str) -> str | None:
        kind = classify_timestamp(value)
        if kind is TimestampKind.ABSENT:
            return None
        converted = to_iso(value)
        if converted is None:
            self.anomalies.append(
                MergeConflict(self.collection, self.doc_id, f"unparseable timestamp in '{field_name}'")
            )
        return converted

    def outcome(
        self,
        status: OutcomeStatus,
        *,
        user_id: str | None = None,
        reason: str | None = None,
    ) -> RecordOutcome:
        conflict = MergeConflict(self.collection, self.doc_id, reason) if reason else None
        return RecordOutcome(
            collection=self.collection,
            doc_id=self.doc_id,
            status=status,
            user_id=user_id,
            conflict=conflict,
            anomalies=tuple(self.anomalies),
        )


class UpsertOrchestrator:
    """Reconciles source records into the canonical store, one at a time.

    Every per-record failure becomes a conflict on the returned outcome; only
    an unsupported collection name raises.
    """

    def __init__(
        self,
        store: CanonicalStore,
        resolver: IdentityResolver | None = None,
        *,
        clock: Callable[[], datetime] = now_utc,
        credential_factory: Callable[[], str] = generate_placeholder_credential,
    ) -> None:
        self._store = store
        self._resolver = resolver or IdentityResolver(store)
        self._clock = clock
        self._credential_factory = credential_factory

    async def run_pass(self, collection: str, reader: LegacySourceReader) -> PassResult:
        policy = policy_for(collection)
        result = PassResult(collection=policy.name)
        try:
            documents = await policy.fetch(reader)
        except CollectionNotFoundError:
            logger.info("migration_collection_missing", extra={"collection": policy.name})
            return result
        except Exception as exc:
            logger.warning(
                "migration_collection_unreadable",
                extra={"collection": policy.name, "reason": str(exc)},
                exc_info=True,
            )
            result.conflicts.append(MergeConflict(policy.name, NO_DOC_ID, f"collection read failed: {exc}"))
            return result

        logger.info(
            "migration_pass_started",
            extra={"collection": policy.name, "document_count": len(documents)},
        )
        for document in documents:
            result.record(await self.process_source_record(policy.name, document))
        logger.info(
            "migration_pass_completed",
            extra={
                "collection": policy.name,
                "migrated_count": result.migrated_count,
                "skipped_count": result.skipped_count,
                "conflict_count": len(result.conflicts),
            },
        )
        return result

    async def process_source_record(self, collection: str, source: SourceDocument) -> RecordOutcome:
        policy = policy_for(collection)
        context = _RecordContext(policy.name, source.doc_id)
        try:
            if isinstance(policy, DocumentCollectionPolicy):
                return await self._upsert_document(policy, source, context)
            return await self._upsert_user(policy, source, context)
        except RecordRejectedError as exc:
            logger.info(
                "migration_record_skipped",
                extra={"collection": policy.name, "doc_id": source.doc_id, "reason": str(exc)},
            )
            return context.outcome(OutcomeStatus.SKIPPED, reason=str(exc))
        except Exception as exc:
            logger.warning(
                "migration_record_failed",
                extra={"collection": policy.name, "doc_id": source.doc_id, "reason": str(exc)},
                exc_info=True,
            )
            return context.outcome(OutcomeStatus.FAILED, reason=str(exc) or type(exc).__name__)

    async def _upsert_document(
        self,
        policy: DocumentCollectionPolicy,
        source: SourceDocument,
        context: _RecordContext,
    ) -> RecordOutcome:
        if source.doc_id in policy.skip_ids:
            return context.outcome(OutcomeStatus.SKIPPED)

        attributes: dict[str, Any] = {}
        for attribute in policy.attributes:
            raw = resolve_field(source.data, attribute.canonical)
            if attribute.timestamp:
                attributes[attribute.column] = context.timestamp(raw, attribute.canonical)
            elif raw is ABSENT:
                attributes[attribute.column] = attribute.default
            else:
                attributes[attribute.column] = deep_coerce_timestamps(raw)

        document = ContentDocument(
            collection=policy.name,
            doc_id=source.doc_id,
            data=deep_coerce_timestamps(source.data),
            attributes=attributes,
            created_at=context.timestamp(resolve_field(source.data, "created_at"), "created_at"),
            updated_at=context.timestamp(resolve_field(source.data, "updated_at"), "updated_at"),
        )
        await self._store.upsert_document(document)
        return context.outcome(OutcomeStatus.UPSERTED)

    async def _upsert_user(
        self,
        policy: UserCollectionPolicy,
        source: SourceDocument,
        context: _RecordContext,
    ) -> RecordOutcome:
        data = source.data
        payload = policy.profile_payload(data)

        email = normalize_email(resolve_or(payload, "email")) or normalize_email(resolve_or(data, "email"))
        if email is None:
            if policy.require_email or not policy.fallback_email_domain:
                raise RecordRejectedError("missing email")
            email = normalize_email(f"{source.doc_id}@{policy.fallback_email_domain}")

        if policy.id_from_document:
            legacy_id = source.doc_id
        else:
            legacy_id = str(resolve_or(data, "legacy_id", source.doc_id))

        full_name = resolve_or(payload, "full_name") or resolve_or(data, "full_name")
        full_name = str(full_name).strip() if is_filled(full_name) else policy.default_full_name

        now = self._clock()
        incoming = self._incoming_profile(policy, payload, data, email, full_name, context)
        marks = tuple(dict.fromkeys((*policy.marks, *MARK_FIELDS)))

        existing = await self._resolver.find_existing(email, legacy_id)
        if existing is not None:
            return await self._update_existing(policy, existing, incoming, data, marks, now, context)

        role = (
            normalize_role(resolve_or(payload, "role") or resolve_or(data, "role", _DEFAULT_SOURCE_ROLE))
            if policy.new_role is None
            else policy.new_role
        )
        status = policy.new_status or str(resolve_or(payload, "status") or resolve_or(data, "status", _DEFAULT_STATUS))
        created_at = context.timestamp(resolve_field(payload, "created_at"), "created_at") or now.isoformat()

        profile = merge_profiles(
            {},
            incoming,
            marks,
            provenance_key=policy.provenance_key,
            source=data,
            now=now,
        )
        profile.update(
            {
                "legacyId": legacy_id,
                "legacyCollection": policy.name,
                "createdAt": created_at,
                "joinedDate": profile.get("joinedDate") or created_at,
                "status": status,
                "role": role.value,
            }
        )
        profile.setdefault("isActive", True)

        user = CanonicalUser(
            user_id=canonical_user_id(legacy_id),
            email=email,
            full_name=full_name,
            role=role.value,
            status=status,
            profile=profile,
            password_hash=self._credential_factory(),
            password_reset_required=True,
            created_at=created_at,
            updated_at=now.isoformat(),
        )
        created = await self._store.insert_user(user)
        logger.info(
            "migration_user_created",
            extra={"collection": policy.name, "doc_id": context.doc_id, "user_id": created.user_id, "role": user.role},
        )
        return context.outcome(OutcomeStatus.CREATED, user_id=created.user_id)

    async def _update_existing(
        self,
        policy: UserCollectionPolicy,
        existing: CanonicalUser,
        incoming: Mapping[str, Any],
        data: Mapping[str, Any],
        marks: tuple[str, ...],
        now: datetime,
        context: _RecordContext,
    ) -> RecordOutcome:
        profile = merge_profiles(
            existing.profile,
            incoming,
            marks,
            provenance_key=policy.provenance_key,
            source=data,
            now=now,
        )
        updates: dict[str, Any] = {"profile": profile}

        role = normalize_role(existing.role)
        if policy.promote_to is not None:
            role = promote_role(existing.role, policy.promote_to)
            if role.value != existing.role:
                updates["role"] = role.value
        profile["role"] = role.value

        if policy.status_from_source_on_update:
            source_status = resolve_or(data, "status")
            if is_filled(source_status) and str(source_status) != existing.status:
                updates["status"] = str(source_status)
        profile["status"] = updates.get("status", existing.status)

        if not is_filled(existing.full_name):
            name = incoming.get("fullName")
            if is_filled(name):
                updates["full_name"] = name

        updated = await self._store.update_user(existing.user_id, updates)
        logger.info(
            "migration_user_updated",
            extra={"collection": policy.name, "doc_id": context.doc_id, "user_id": updated.user_id, "role": updated.role},
        )
        return context.outcome(OutcomeStatus.UPDATED, user_id=updated.user_id)

    def _incoming_profile(
        self,
        policy: UserCollectionPolicy,
        payload: Mapping[str, Any],
        data: Mapping[str, Any],
        email: str,
        full_name: str,
        context: _RecordContext,
    ) -> dict[str, Any]:
        incoming: dict[str, Any] = dict(payload)
        for key in ("createdAt", "updatedAt", "created_at", "updated_at"):
            incoming.pop(key, None)
        incoming["email"] = email
        if full_name:
            incoming["fullName"] = full_name
            incoming["displayName"] = full_name
        for mark in policy.marks:
            incoming[mark] = True

        for profile_field in policy.profile_fields:
            raw = resolve_field(data, profile_field.canonical)
            if profile_field.timestamp:
                value = context.timestamp(raw, profile_field.canonical)
                if value is None and classify_timestamp(raw) is not TimestampKind.ABSENT:
                    for variant in FIELD_VARIANTS[profile_field.canonical]:
                        if variant in incoming:
                            incoming[variant] = None
                    incoming[profile_field.key] = None
            else:
                value = None if raw is ABSENT else deep_coerce_timestamps(raw)
            if value is None and profile_field.fallback_key:
                value = incoming.get(profile_field.fallback_key)
            if value is not None:
                incoming[profile_field.key] = value
        return incoming
