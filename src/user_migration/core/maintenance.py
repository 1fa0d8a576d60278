from __future__ import annotations

import logging

from user_migration.core.models import CanonicalUser
from user_migration.core.store import CanonicalStore
from user_migration.roles import Role

logger = logging.getLogger(__name__)

ADMIN_PROVENANCE_KEY = "adminData"


def _carries_admin_marker(user: CanonicalUser) -> bool:
    profile = user.profile or {}
    return bool(profile.get("isAdmin")) or bool(profile.get(ADMIN_PROVENANCE_KEY))


async def reconcile_admin_roles(store: CanonicalStore, *, dry_run: bool = False) -> list[CanonicalUser]:
    """Promote users whose profile marks them as administrators.

    Only profile evidence written by the admins pass counts; email patterns
    are never used to grant the role.
    """
    affected: list[CanonicalUser] = []
    for user in await store.list_users():
        if user.role == Role.ADMINISTRATOR.value or not _carries_admin_marker(user):
            continue
        if dry_run:
            logger.info("admin_role_mismatch", extra={"user_id": user.user_id, "role": user.role})
            affected.append(user)
            continue
        profile = {**(user.profile or {}), "role": Role.ADMINISTRATOR.value}
        updated = await store.update_user(user.user_id, {"role": Role.ADMINISTRATOR.value, "profile": profile})
        logger.info("admin_role_reconciled", extra={"user_id": user.user_id, "previous_role": user.role})
        affected.append(updated)
    logger.info("admin_role_reconcile_completed", extra={"affected_count": len(affected), "dry_run": dry_run})
    return affected
