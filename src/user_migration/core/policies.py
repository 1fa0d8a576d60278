from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from user_migration.core.merge import is_filled, strip_credentials
from user_migration.core.models import SourceDocument
from user_migration.roles import Role
from user_migration.sources.base import LegacySourceReader


@dataclass(frozen=True)
class ProfileField:
    key: str
    canonical: str
    timestamp: bool = False
    fallback_key: str | None = None


@dataclass(frozen=True)
class UserCollectionPolicy:
    name: str
    provenance_key: str | None = None
    marks: tuple[str, ...] = ()
    new_role: Role | None = None
    promote_to: Role | None = None
    new_status: str | None = None
    status_from_source_on_update: bool = False
    default_full_name: str = ""
    require_email: bool = True
    fallback_email_domain: str | None = None
    nested_profile_key: str | None = None
    id_from_document: bool = False
    profile_fields: tuple[ProfileField, ...] = ()

    def profile_payload(self, data: Mapping[str, Any]) -> Mapping[str, Any]:
        if self.nested_profile_key:
            nested = data.get(self.nested_profile_key)
            if isinstance(nested, Mapping):
                payload = {key: value for key, value in data.items() if key != self.nested_profile_key}
                for key, value in nested.items():
                    if is_filled(value) or key not in payload:
                        payload[key] = value
                return strip_credentials(payload)
        return data

    async def fetch(self, reader: LegacySourceReader) -> list[SourceDocument]:
        return await reader.list_collection(self.name)


@dataclass(frozen=True)
class DocumentAttribute:
    column: str
    canonical: str
    timestamp: bool = False
    default: Any = None


@dataclass(frozen=True)
class DocumentCollectionPolicy:
    name: str
    source_collection: str
    parent_path: str | None = None
    skip_ids: frozenset[str] = frozenset()
    attributes: tuple[DocumentAttribute, ...] = ()

    async def fetch(self, reader: LegacySourceReader) -> list[SourceDocument]:
        if self.parent_path:
            return await reader.get_subcollection(self.parent_path, self.source_collection)
        return await reader.list_collection(self.source_collection)


CollectionPolicy = Union[UserCollectionPolicy, DocumentCollectionPolicy]

_TRUST_TRACKING_FIELDS = (
    ProfileField("addedToTrustedAt", "added_at", timestamp=True),
    ProfileField("movedToTrustedAt", "moved_to_trusted_at", timestamp=True, fallback_key="addedToTrustedAt"),
    ProfileField("applicationId", "application_id"),
    ProfileField("actionBy", "action_by"),
    ProfileField("actionType", "action_type"),
    ProfileField("actionReason", "action_reason"),
    ProfileField("lastActionAt", "last_action_at", timestamp=True),
    ProfileField("reviewedBy", "reviewed_by"),
    ProfileField("lastModifiedBy", "last_modified_by"),
    ProfileField("lastDocumentSubmissionDate", "last_document_submission_date", timestamp=True),
    ProfileField("hasPendingDocumentRequests", "has_pending_document_requests"),
)

USERS = UserCollectionPolicy(
    name="users",
    nested_profile_key="profile",
    id_from_document=True,
)

TRUSTED_USERS = UserCollectionPolicy(
    name="trusted_users",
    provenance_key="trustedUserData",
    marks=("isTrusted",),
    new_role=Role.TRUSTED,
    promote_to=Role.TRUSTED,
    new_status="active",
    default_full_name="Trusted User",
    profile_fields=_TRUST_TRACKING_FIELDS,
)

USER_APPLICATIONS = UserCollectionPolicy(
    name="user_applications",
    provenance_key="applicationData",
    new_role=Role.COMMON,
    status_from_source_on_update=True,
    default_full_name="User",
    profile_fields=(
        ProfileField("applicationType", "application_type"),
        ProfileField("applicationStatus", "status"),
        ProfileField("applicationSubmittedAt", "submitted_at", timestamp=True),
        ProfileField("applicationReviewedAt", "reviewed_at", timestamp=True),
    ),
)

ADMINS = UserCollectionPolicy(
    name="admins",
    provenance_key="adminData",
    marks=("isAdmin",),
    new_role=Role.ADMINISTRATOR,
    promote_to=Role.ADMINISTRATOR,
    new_status="active",
    default_full_name="Admin User",
    require_email=False,
    fallback_email_domain="admin.local",
)

ADMIN_CONTENT = DocumentCollectionPolicy(
    name="admin_content",
    source_collection="admin_content",
    skip_ids=frozenset({"statistics"}),
)

STATISTICS_ITEMS = DocumentCollectionPolicy(
    name="statistics_items",
    source_collection="items",
    parent_path="admin_content/statistics",
    attributes=(
        DocumentAttribute("label", "label"),
        DocumentAttribute("description", "description"),
        DocumentAttribute("value", "value"),
        DocumentAttribute("order_index", "order_index", default=0),
        DocumentAttribute("is_active", "is_active", default=True),
    ),
)

ACTIVITIES = DocumentCollectionPolicy(
    name="activities",
    source_collection="activities",
)

UNTRUSTED_USERS = DocumentCollectionPolicy(
    name="untrusted_users",
    source_collection="untrusted_users",
    attributes=(
        DocumentAttribute("user_id", "legacy_id"),
        DocumentAttribute("user_email", "email"),
        DocumentAttribute("added_at", "added_at", timestamp=True),
    ),
)

PAYMENT_PLACE_SUBMISSIONS = DocumentCollectionPolicy(
    name="payment_place_submissions",
    source_collection="payment_place_submissions",
    attributes=(
        DocumentAttribute("user_id", "legacy_id"),
        DocumentAttribute("place_name", "place_name"),
        DocumentAttribute("status", "status", default="pending"),
        DocumentAttribute("submitted_at", "submitted_at", timestamp=True),
    ),
)

# Later passes promote roles on users created by earlier ones.
MIGRATION_ORDER: tuple[str, ...] = (
    "admin_content",
    "statistics_items",
    "users",
    "activities",
    "trusted_users",
    "untrusted_users",
    "payment_place_submissions",
    "user_applications",
    "admins",
)

POLICIES: dict[str, CollectionPolicy] = {
    policy.name: policy
    for policy in (
        ADMIN_CONTENT,
        STATISTICS_ITEMS,
        USERS,
        ACTIVITIES,
        TRUSTED_USERS,
        UNTRUSTED_USERS,
        PAYMENT_PLACE_SUBMISSIONS,
        USER_APPLICATIONS,
        ADMINS,
    )
}


def policy_for(collection: str) -> CollectionPolicy:
    policy = POLICIES.get(collection)
    if policy is None:
        supported = ", ".join(sorted(POLICIES))
        raise ValueError(f"unsupported collection '{collection}', supported: {supported}")
    return policy
