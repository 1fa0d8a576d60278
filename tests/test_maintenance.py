import pytest

from user_migration.core.maintenance import reconcile_admin_roles
from user_migration.core.models import CanonicalUser
from user_migration.jobs.store import InMemoryCanonicalStore


async def _seed(store: InMemoryCanonicalStore) -> None:
    await store.insert_user(CanonicalUser("user_a", "a@x.com", "A", "common", profile={"isAdmin": True}))
    await store.insert_user(CanonicalUser("user_b", "b@x.com", "B", "trusted", profile={"adminData": {"uid": "b"}}))
    await store.insert_user(CanonicalUser("user_c", "admin@x.com", "C", "common", profile={}))
    await store.insert_user(CanonicalUser("user_d", "d@x.com", "D", "administrator", profile={"isAdmin": True}))


@pytest.mark.asyncio
async def test_reconcile_promotes_users_with_admin_markers_only() -> None:
    store = InMemoryCanonicalStore()
    await _seed(store)

    affected = await reconcile_admin_roles(store)

    assert sorted(user.user_id for user in affected) == ["user_a", "user_b"]
    roles = {user.user_id: user.role for user in await store.list_users()}
    assert roles == {
        "user_a": "administrator",
        "user_b": "administrator",
        "user_c": "common",
        "user_d": "administrator",
    }
    promoted = await store.query_by_id("user_a")
    assert promoted is not None and promoted.profile["role"] == "administrator"


@pytest.mark.asyncio
async def test_reconcile_dry_run_writes_nothing() -> None:
    store = InMemoryCanonicalStore()
    await _seed(store)

    affected = await reconcile_admin_roles(store, dry_run=True)

    assert len(affected) == 2
    user = await store.query_by_id("user_a")
    assert user is not None and user.role == "common"
