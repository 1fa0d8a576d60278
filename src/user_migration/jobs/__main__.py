from __future__ import annotations

import argparse
import asyncio
import json
import logging
from collections.abc import Sequence

from servicekit.observability import configure_logging, configure_otel
from user_migration.config import MigrationSettings, load_migration_settings
from user_migration.core.coordinator import MigrationCoordinator
from user_migration.core.exceptions import ConfigurationError, SourceUnavailableError, StoreUnavailableError
from user_migration.core.maintenance import reconcile_admin_roles
from user_migration.core.metrics import InMemoryMigrationMetricsCollector
from user_migration.core.profiles import client_summary, full_profile, merged_user_view
from user_migration.core.store import CanonicalStore
from user_migration.jobs.postgres_store import PostgresCanonicalStore
from user_migration.sources.base import LegacySourceReader
from user_migration.sources.firestore import FirestoreSourceReader
from user_migration.sources.jsonl import JsonlSourceReader

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFLICTS = 1
EXIT_FATAL = 2

_SOURCE_BACKENDS = ("firestore", "jsonl")


def _build_source(settings: MigrationSettings) -> LegacySourceReader:
    backend = settings.LEGACY_SOURCE_BACKEND.lower()
    if backend == "firestore":
        return FirestoreSourceReader(
            project_id=settings.FIRESTORE_PROJECT_ID,
            service_account_json=settings.FIREBASE_SERVICE_ACCOUNT_JSON,
            credentials_file=settings.GOOGLE_APPLICATION_CREDENTIALS,
        )
    if backend == "jsonl":
        if not settings.LEGACY_EXPORT_DIR:
            raise ConfigurationError("LEGACY_EXPORT_DIR is required for the jsonl source")
        return JsonlSourceReader(settings.LEGACY_EXPORT_DIR)
    supported = ", ".join(_SOURCE_BACKENDS)
    raise ConfigurationError(f"unsupported LEGACY_SOURCE_BACKEND '{backend}', supported: {supported}")


def _build_store(settings: MigrationSettings) -> CanonicalStore:
    if not settings.DATABASE_URL:
        raise ConfigurationError("missing required environment variable: DATABASE_URL")
    if settings.MIGRATION_DB_MAX_RETRIES <= 0:
        raise ConfigurationError("MIGRATION_DB_MAX_RETRIES must be > 0")
    return PostgresCanonicalStore(settings.DATABASE_URL, max_retries=settings.MIGRATION_DB_MAX_RETRIES)


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m user_migration.jobs",
        description="Migrate legacy users into the canonical store.",
    )
    parser.set_defaults(command="migrate")
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("migrate", help="run every migration pass (default)")
    fix = commands.add_parser("fix-admin-roles", help="promote users carrying admin markers")
    fix.add_argument("--dry-run", action="store_true", help="report without writing")
    show = commands.add_parser("show-user", help="print the canonical views of one user")
    show.add_argument("email")
    return parser.parse_args(argv)


def _emit(payload: dict) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False))


async def _migrate(settings: MigrationSettings, store: CanonicalStore) -> int:
    source = _build_source(settings)
    try:
        coordinator = MigrationCoordinator(source, store, metrics=InMemoryMigrationMetricsCollector())
        summary = await coordinator.run_all()
    finally:
        await source.close()
    _emit(summary.to_dict())
    return EXIT_CONFLICTS if summary.exit_code else EXIT_OK


async def _fix_admin_roles(store: CanonicalStore, dry_run: bool) -> int:
    affected = await reconcile_admin_roles(store, dry_run=dry_run)
    _emit(
        {
            "dry_run": dry_run,
            "affected_count": len(affected),
            "user_ids": [user.user_id for user in affected],
        }
    )
    return EXIT_OK


async def _show_user(store: CanonicalStore, email: str) -> int:
    matches = await store.query_by_email(email)
    if not matches:
        logger.warning("user_not_found", extra={"email": email})
        return EXIT_CONFLICTS
    user = matches[0]
    _emit(
        {
            "user": merged_user_view(user),
            "full_profile": full_profile(user),
            "client": client_summary(user),
        }
    )
    return EXIT_OK


async def _dispatch(args: argparse.Namespace, settings: MigrationSettings) -> int:
    store = _build_store(settings)
    try:
        if args.command == "fix-admin-roles":
            return await _fix_admin_roles(store, args.dry_run)
        if args.command == "show-user":
            return await _show_user(store, args.email)
        return await _migrate(settings, store)
    finally:
        await store.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = load_migration_settings()
    configure_logging(settings.LOG_LEVEL)
    configure_otel(settings.SERVICE_NAME)
    try:
        return asyncio.run(_dispatch(args, settings))
    except (ConfigurationError, SourceUnavailableError, StoreUnavailableError) as exc:
        logger.error("migration_job_fatal", extra={"command": args.command, "reason": str(exc)})
        return EXIT_FATAL


if __name__ == "__main__":
    raise SystemExit(main())
