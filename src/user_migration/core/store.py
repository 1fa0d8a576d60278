from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from user_migration.core.models import CanonicalUser, ContentDocument

USER_UPDATABLE_FIELDS = (
    "email",
    "full_name",
    "role",
    "status",
    "profile",
    "password_hash",
    "password_reset_required",
)

# Profile keys that may hold the identifier a user had in the legacy store.
PROFILE_LEGACY_ID_KEYS = ("legacyId", "uid", "firebaseUid")


class CanonicalStore(ABC):
    """Relational target of the migration.

    Every operation raises ``StoreError`` when it fails; callers treat that as a
    per-record conflict.
    """

    @abstractmethod
    async def ping(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def query_by_email(self, email: str) -> list[CanonicalUser]:
        raise NotImplementedError

    @abstractmethod
    async def query_by_id(self, user_id: str) -> CanonicalUser | None:
        raise NotImplementedError

    @abstractmethod
    async def query_by_profile_legacy_id(self, legacy_id: str) -> list[CanonicalUser]:
        raise NotImplementedError

    @abstractmethod
    async def insert_user(self, user: CanonicalUser) -> CanonicalUser:
        raise NotImplementedError

    @abstractmethod
    async def update_user(self, user_id: str, updates: dict[str, Any]) -> CanonicalUser:
        raise NotImplementedError

    @abstractmethod
    async def upsert_document(self, document: ContentDocument) -> ContentDocument:
        raise NotImplementedError

    @abstractmethod
    async def list_users(self) -> list[CanonicalUser]:
        raise NotImplementedError

    async def close(self) -> None:
        return None
