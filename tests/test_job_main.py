from __future__ import annotations

import asyncio
import json

import pytest

from user_migration.config import MigrationSettings
from user_migration.core.exceptions import ConfigurationError
from user_migration.core.models import CanonicalUser
from user_migration.jobs import __main__ as job_main
from user_migration.jobs.__main__ import _build_source, _build_store, main
from user_migration.jobs.postgres_store import PostgresCanonicalStore
from user_migration.jobs.store import InMemoryCanonicalStore
from user_migration.sources.firestore import FirestoreSourceReader
from user_migration.sources.jsonl import JsonlSourceReader
from user_migration.sources.memory import InMemorySourceReader


def _settings(**overrides) -> MigrationSettings:
    return MigrationSettings(**overrides)


def _wire(monkeypatch, store, source=None) -> None:
    monkeypatch.setattr(job_main, "_build_store", lambda settings: store)
    monkeypatch.setattr(job_main, "_build_source", lambda settings: source or InMemorySourceReader())


def test_build_store_requires_database_url() -> None:
    with pytest.raises(ConfigurationError):
        _build_store(_settings(DATABASE_URL=None))


def test_build_store_uses_relational_store_when_configured() -> None:
    store = _build_store(_settings(DATABASE_URL="postgresql://example", MIGRATION_DB_MAX_RETRIES=5))
    assert isinstance(store, PostgresCanonicalStore)
    assert store._db._max_retries == 5


def test_build_source_backends(tmp_path) -> None:
    assert isinstance(_build_source(_settings(LEGACY_SOURCE_BACKEND="firestore")), FirestoreSourceReader)
    jsonl = _build_source(_settings(LEGACY_SOURCE_BACKEND="JSONL", LEGACY_EXPORT_DIR=str(tmp_path)))
    assert isinstance(jsonl, JsonlSourceReader)
    with pytest.raises(ConfigurationError):
        _build_source(_settings(LEGACY_SOURCE_BACKEND="jsonl", LEGACY_EXPORT_DIR=None))
    with pytest.raises(ConfigurationError):
        _build_source(_settings(LEGACY_SOURCE_BACKEND="mongo"))


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("LEGACY_SOURCE_BACKEND", "jsonl")
    monkeypatch.setenv("MIGRATION_DB_MAX_RETRIES", "7")
    settings = MigrationSettings()
    assert settings.LEGACY_SOURCE_BACKEND == "jsonl"
    assert settings.MIGRATION_DB_MAX_RETRIES == 7
    assert settings.SERVICE_NAME == "user-migration"


def test_migrate_prints_summary_and_exits_zero(monkeypatch, capsys) -> None:
    store = InMemoryCanonicalStore()
    _wire(monkeypatch, store, InMemorySourceReader({"users": {"u1": {"email": "a@x.com"}}}))

    assert main([]) == 0

    summary = json.loads(capsys.readouterr().out)
    assert summary == {"migrated_count": 1, "error_count": 0, "errors": [], "anomalies": []}


def test_migrate_exits_one_on_conflicts(monkeypatch, capsys) -> None:
    _wire(monkeypatch, InMemoryCanonicalStore(), InMemorySourceReader({"users": {"u1": {"fullName": "x"}}}))

    assert main(["migrate"]) == 1

    summary = json.loads(capsys.readouterr().out)
    assert summary["errors"] == [{"collection": "users", "doc_id": "u1", "reason": "missing email"}]


def test_migrate_exits_two_when_store_unreachable(monkeypatch) -> None:
    _wire(monkeypatch, InMemoryCanonicalStore(available=False))
    assert main(["migrate"]) == 2


def test_missing_configuration_exits_two(monkeypatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    assert main(["fix-admin-roles"]) == 2


def test_fix_admin_roles_dry_run(monkeypatch, capsys) -> None:
    store = InMemoryCanonicalStore()
    asyncio.run(store.insert_user(CanonicalUser("user_a", "a@x.com", "A", "common", profile={"isAdmin": True})))
    _wire(monkeypatch, store)

    assert main(["fix-admin-roles", "--dry-run"]) == 0

    report = json.loads(capsys.readouterr().out)
    assert report == {"dry_run": True, "affected_count": 1, "user_ids": ["user_a"]}


def test_show_user(monkeypatch, capsys) -> None:
    store = InMemoryCanonicalStore()
    asyncio.run(store.insert_user(CanonicalUser("user_a", "a@x.com", "A", "trusted", profile={"city": "Oslo"})))
    _wire(monkeypatch, store)

    assert main(["show-user", "A@x.com"]) == 0
    views = json.loads(capsys.readouterr().out)
    assert views["user"]["id"] == "user_a"
    assert views["client"]["role"] == "trusted"

    assert main(["show-user", "nobody@x.com"]) == 1
