from __future__ import annotations

import logging
import re
import secrets

from user_migration.core.exceptions import IdentityResolutionError
from user_migration.core.fields import normalize_email
from user_migration.core.models import CanonicalUser
from user_migration.core.store import CanonicalStore

logger = logging.getLogger(__name__)

USER_ID_PREFIX = "user_"
_SAFE_LEGACY_ID = re.compile(r"^[A-Za-z0-9_-]{1,200}$")


def generate_user_id() -> str:
    return f"{USER_ID_PREFIX}{secrets.token_hex(6)}"


def canonical_user_id(legacy_id: str | None) -> str:
    if not legacy_id or not _SAFE_LEGACY_ID.match(legacy_id):
        return generate_user_id()
    if legacy_id.startswith(USER_ID_PREFIX):
        return legacy_id
    return f"{USER_ID_PREFIX}{legacy_id}"


class IdentityResolver:
    """Finds the canonical user a source record describes. Never writes."""

    def __init__(self, store: CanonicalStore) -> None:
        self._store = store

    async def find_existing(self, email: str | None, legacy_id: str | None) -> CanonicalUser | None:
        normalized_email = normalize_email(email)
        legacy = legacy_id.strip() if isinstance(legacy_id, str) else None
        if not normalized_email and not legacy:
            raise IdentityResolutionError("record has neither an email nor a legacy id")

        if normalized_email:
            matches = await self._store.query_by_email(normalized_email)
            if matches:
                return self._first(matches, key="email", value=normalized_email)

        if legacy:
            for candidate in dict.fromkeys((legacy, f"{USER_ID_PREFIX}{legacy}")):
                found = await self._store.query_by_id(candidate)
                if found is not None:
                    return found
            matches = await self._store.query_by_profile_legacy_id(legacy)
            if matches:
                return self._first(matches, key="legacy_id", value=legacy)
        return None

    def _first(self, matches: list[CanonicalUser], *, key: str, value: str) -> CanonicalUser:
        if len(matches) > 1:
            logger.warning(
                "identity_ambiguous_match",
                extra={
                    "lookup": key,
                    "lookup_value": value,
                    "match_count": len(matches),
                    "user_ids": [item.user_id for item in matches],
                },
            )
        return matches[0]
