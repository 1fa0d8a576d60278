import pytest

from user_migration.core.coordinator import MigrationCoordinator
from user_migration.core.exceptions import SourceUnavailableError, StoreUnavailableError
from user_migration.core.metrics import InMemoryMigrationMetricsCollector
from user_migration.jobs.store import InMemoryCanonicalStore
from user_migration.sources.memory import InMemorySourceReader


class CountingReader(InMemorySourceReader):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.reads: list[str] = []

    async def list_collection(self, name: str):
        self.reads.append(name)
        return await super().list_collection(name)


class ExplodingStore(InMemoryCanonicalStore):
    async def ping(self) -> None:
        raise ConnectionRefusedError("connection refused")


@pytest.mark.asyncio
async def test_run_aggregates_persistence_failures() -> None:
    failing = {"user_tu1", "user_tu4", "user_tu7"}
    store = InMemoryCanonicalStore(fail_on=lambda operation, key: operation == "insert_user" and key in failing)
    source = InMemorySourceReader(
        {"trusted_users": {f"tu{index}": {"email": f"u{index}@x.com"} for index in range(10)}}
    )
    coordinator = MigrationCoordinator(source, store, passes=("trusted_users",))

    summary = await coordinator.run_all()

    assert summary.migrated_count == 7
    assert summary.error_count == 3
    assert len(summary.errors) == 3
    assert sorted(item.doc_id for item in summary.errors) == ["tu1", "tu4", "tu7"]
    assert summary.exit_code == 1
    payload = summary.to_dict()
    assert payload["migrated_count"] == 7
    assert payload["error_count"] == 3
    assert set(payload["errors"][0]) == {"collection", "doc_id", "reason"}


@pytest.mark.asyncio
async def test_full_run_in_fixed_order_promotes_across_passes() -> None:
    source = CountingReader(
        {
            "users": {"u1": {"email": "a@x.com", "profile": {"fullName": "A"}}},
            "trusted_users": {"t1": {"userId": "u1", "email": "a@x.com"}},
            "admins": {"a1": {"uid": "u1"}},
            "activities": {"act1": {"kind": "login"}},
        }
    )
    store = InMemoryCanonicalStore()
    metrics = InMemoryMigrationMetricsCollector()

    summary = await MigrationCoordinator(source, store, metrics=metrics).run_all()

    assert source.reads == [
        "admin_content",
        "users",
        "activities",
        "trusted_users",
        "untrusted_users",
        "payment_place_submissions",
        "user_applications",
        "admins",
    ]
    assert summary.error_count == 0
    assert summary.exit_code == 0
    assert summary.migrated_count == 4
    [user] = await store.list_users()
    assert user.user_id == "user_u1"
    assert user.role == "administrator"
    assert user.profile["isTrusted"] is True
    assert user.profile["isAdmin"] is True
    assert [item.collection for item in metrics.pass_durations][0] == "admin_content"
    assert metrics.migration_records_total[("admins", "migrated")] == 1
    assert metrics.migration_run_total["success"] == 1


@pytest.mark.asyncio
async def test_second_run_creates_no_duplicates() -> None:
    source = InMemorySourceReader(
        {
            "users": {"u1": {"email": "a@x.com"}},
            "trusted_users": {"t1": {"email": "A@x.com"}},
        }
    )
    store = InMemoryCanonicalStore()
    coordinator = MigrationCoordinator(source, store)

    await coordinator.run_all()
    second = await coordinator.run_all()

    assert second.error_count == 0
    [user] = await store.list_users()
    assert user.role == "trusted"


@pytest.mark.asyncio
async def test_unreachable_store_aborts_before_any_pass() -> None:
    source = CountingReader({"users": {"u1": {"email": "a@x.com"}}})
    metrics = InMemoryMigrationMetricsCollector()
    coordinator = MigrationCoordinator(source, InMemoryCanonicalStore(available=False), metrics=metrics)

    with pytest.raises(StoreUnavailableError):
        await coordinator.run_all()
    assert source.reads == []
    assert metrics.migration_run_total["aborted"] == 1


@pytest.mark.asyncio
async def test_unexpected_ping_failure_is_wrapped_as_unreachable_store() -> None:
    with pytest.raises(StoreUnavailableError, match="connection refused"):
        await MigrationCoordinator(InMemorySourceReader(), ExplodingStore()).verify_connections()


@pytest.mark.asyncio
async def test_unreachable_source_aborts_run() -> None:
    store = InMemoryCanonicalStore()
    coordinator = MigrationCoordinator(InMemorySourceReader(available=False), store)

    with pytest.raises(SourceUnavailableError):
        await coordinator.run_all()
    assert await store.list_users() == []


def test_unknown_pass_is_rejected_up_front() -> None:
    with pytest.raises(ValueError):
        MigrationCoordinator(InMemorySourceReader(), InMemoryCanonicalStore(), passes=("users", "orders"))
