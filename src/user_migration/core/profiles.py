"""Read-side views over canonical users.

None of these views include the password credential; they only read the
canonical columns and the profile bag.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from user_migration.core.models import CanonicalUser
from user_migration.roles import normalize_role

PROMOTED_PROFILE_FIELDS = (
    "phoneNumber",
    "location",
    "services",
    "moneyTransferServices",
    "referenceNumber",
    "displayName",
    "profileImageUrl",
    "createdAt",
    "updatedAt",
    "isActive",
    "isApproved",
    "joinedDate",
)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple, Mapping)):
        return len(value) == 0
    return False


def remove_empty(value: Any) -> Any:
    if isinstance(value, Mapping):
        cleaned = {}
        for key, item in value.items():
            item = remove_empty(item)
            if not _is_empty(item):
                cleaned[key] = item
        return cleaned or None
    if isinstance(value, (list, tuple)):
        items = [remove_empty(item) for item in value]
        kept = [item for item in items if not _is_empty(item)]
        return kept or None
    return value


def _profile(user: CanonicalUser) -> dict[str, Any]:
    return user.profile if isinstance(user.profile, dict) else {}


def merged_user_view(user: CanonicalUser) -> dict[str, Any]:
    profile = _profile(user)
    merged: dict[str, Any] = {
        "id": user.user_id,
        "fullName": user.full_name or profile.get("fullName") or profile.get("displayName") or None,
        "email": (user.email or profile.get("email") or "").lower() or None,
        "role": normalize_role(user.role or profile.get("role")).value,
        "status": user.status or profile.get("status") or None,
    }
    for key in PROMOTED_PROFILE_FIELDS:
        if key in profile and key not in merged:
            merged[key] = profile[key]
    merged["profile"] = profile
    return merged


def full_profile(user: CanonicalUser) -> dict[str, Any]:
    profile = _profile(user)
    grouped = {
        "contact": {
            "phoneNumber": profile.get("phoneNumber") or None,
            "showPhone": profile.get("showPhone"),
            "showEmail": profile.get("showEmail"),
        },
        "location": {
            "city": profile.get("city") or None,
            "country": profile.get("country") or None,
        },
        "services": {
            "offered": profile.get("services") or [],
            "moneyTransfer": profile.get("moneyTransferServices") or [],
            "paymentMethods": profile.get("servicePaymentMethods") or [],
        },
        "profile": {
            "bio": profile.get("bio") or None,
            "rating": profile.get("rating"),
            "totalReviews": profile.get("totalReviews"),
        },
        "verification": {
            "emailVerified": bool(profile.get("emailVerified")),
            "phoneVerified": bool(profile.get("phoneVerified")),
        },
    }
    return remove_empty(grouped) or {}


def client_summary(user: CanonicalUser) -> dict[str, Any]:
    profile = _profile(user)
    summary = {
        "id": user.user_id,
        "email": user.email,
        "fullName": user.full_name or profile.get("displayName") or None,
        "role": user.role,
        "status": user.status or None,
        "profileImageUrl": profile.get("profileImageUrl") or None,
        "isApproved": bool(profile.get("isApproved", False)),
    }
    return remove_empty(summary) or {}
