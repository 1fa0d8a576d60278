from __future__ import annotations

from collections.abc import Callable
import copy
from dataclasses import replace
from typing import Any

from servicekit.timezone import now_utc_iso
from user_migration.core.exceptions import StoreError, StoreUnavailableError
from user_migration.core.models import CanonicalUser, ContentDocument
from user_migration.core.store import PROFILE_LEGACY_ID_KEYS, USER_UPDATABLE_FIELDS, CanonicalStore


def _copy_user(user: CanonicalUser) -> CanonicalUser:
    return replace(user, profile=copy.deepcopy(user.profile))


class InMemoryCanonicalStore(CanonicalStore):
    """Canonical store used when no database is configured and in tests.

    ``fail_on(operation, key)`` lets callers inject a ``StoreError`` for a
    given operation (``insert_user``, ``update_user``, ``upsert_document``)
    and key (user id or document id).
    """

    def __init__(
        self,
        *,
        available: bool = True,
        fail_on: Callable[[str, str], bool] | None = None,
    ) -> None:
        self._users: dict[str, CanonicalUser] = {}
        self._documents: dict[tuple[str, str], ContentDocument] = {}
        self._available = available
        self._fail_on = fail_on

    async def ping(self) -> None:
        if not self._available:
            raise StoreUnavailableError("in-memory store marked unavailable")

    async def query_by_email(self, email: str) -> list[CanonicalUser]:
        needle = email.strip().lower()
        return [_copy_user(user) for user in self._users.values() if user.email.lower() == needle]

    async def query_by_id(self, user_id: str) -> CanonicalUser | None:
        user = self._users.get(user_id)
        return _copy_user(user) if user is not None else None

    async def query_by_profile_legacy_id(self, legacy_id: str) -> list[CanonicalUser]:
        return [
            _copy_user(user)
            for user in self._users.values()
            if any(str(user.profile.get(key)) == legacy_id for key in PROFILE_LEGACY_ID_KEYS if key in user.profile)
        ]

    async def insert_user(self, user: CanonicalUser) -> CanonicalUser:
        self._maybe_fail("insert_user", user.user_id)
        if user.user_id in self._users:
            raise StoreError(f"duplicate user id: {user.user_id}")
        if self._email_taken(user.email):
            raise StoreError(f"duplicate email: {user.email}")
        stored = replace(_copy_user(user), email=user.email.lower())
        self._users[stored.user_id] = stored
        return _copy_user(stored)

    async def update_user(self, user_id: str, updates: dict[str, Any]) -> CanonicalUser:
        self._maybe_fail("update_user", user_id)
        user = self._users.get(user_id)
        if user is None:
            raise StoreError(f"user not found: {user_id}")
        unknown = set(updates) - set(USER_UPDATABLE_FIELDS)
        if unknown:
            raise StoreError(f"fields not updatable: {', '.join(sorted(unknown))}")
        if "email" in updates and self._email_taken(updates["email"], exclude=user_id):
            raise StoreError(f"duplicate email: {updates['email']}")
        changes = {key: copy.deepcopy(value) for key, value in updates.items()}
        if "email" in changes:
            changes["email"] = str(changes["email"]).lower()
        updated = replace(user, **changes, updated_at=now_utc_iso())
        self._users[user_id] = updated
        return _copy_user(updated)

    async def upsert_document(self, document: ContentDocument) -> ContentDocument:
        self._maybe_fail("upsert_document", document.doc_id)
        stored = copy.deepcopy(document)
        self._documents[(document.collection, document.doc_id)] = stored
        return copy.deepcopy(stored)

    async def list_users(self) -> list[CanonicalUser]:
        return [_copy_user(user) for user in self._users.values()]

    async def list_documents(self, collection: str) -> list[ContentDocument]:
        return [copy.deepcopy(doc) for (name, _), doc in self._documents.items() if name == collection]

    def _email_taken(self, email: str, *, exclude: str | None = None) -> bool:
        needle = email.strip().lower()
        return any(user.email.lower() == needle and user.user_id != exclude for user in self._users.values())

    def _maybe_fail(self, operation: str, key: str) -> None:
        if self._fail_on is not None and self._fail_on(operation, key):
            raise StoreError(f"{operation} failed for {key}")
