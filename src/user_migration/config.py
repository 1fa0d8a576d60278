from __future__ import annotations

from servicekit.config import ServiceSettings


class MigrationSettings(ServiceSettings):
    SERVICE_NAME: str = "user-migration"
    LEGACY_SOURCE_BACKEND: str = "firestore"
    LEGACY_EXPORT_DIR: str | None = None
    FIRESTORE_PROJECT_ID: str | None = None
    FIREBASE_SERVICE_ACCOUNT_JSON: str | None = None
    GOOGLE_APPLICATION_CREDENTIALS: str | None = None
    MIGRATION_DB_MAX_RETRIES: int = 3


def load_migration_settings() -> MigrationSettings:
    return MigrationSettings()
