from __future__ import annotations

from collections.abc import Callable
import json
import logging
from typing import Any

from user_migration.core.exceptions import CollectionNotFoundError, ConfigurationError, SourceUnavailableError
from user_migration.core.models import SourceDocument
from user_migration.sources.base import LegacySourceReader

logger = logging.getLogger(__name__)

_HEALTHCHECK_COLLECTION = "_healthcheck"


def _build_credentials(service_account_json: str | None, credentials_file: str | None) -> tuple[Any, str | None]:
    if not service_account_json and not credentials_file:
        return None, None
    try:
        from google.oauth2 import service_account
    except ImportError as exc:
        raise RuntimeError("google-auth is required for firestore source") from exc

    if service_account_json:
        try:
            info = json.loads(service_account_json)
        except json.JSONDecodeError as exc:
            raise ConfigurationError("FIREBASE_SERVICE_ACCOUNT_JSON is not valid json") from exc
        return service_account.Credentials.from_service_account_info(info), info.get("project_id")
    credentials = service_account.Credentials.from_service_account_file(credentials_file)
    return credentials, getattr(credentials, "project_id", None)


def _default_client_factory(
    project_id: str | None,
    service_account_json: str | None,
    credentials_file: str | None,
) -> Any:
    try:
        from google.cloud import firestore
    except ImportError as exc:
        raise RuntimeError("google-cloud-firestore is required for firestore source") from exc
    credentials, inferred_project = _build_credentials(service_account_json, credentials_file)
    return firestore.AsyncClient(project=project_id or inferred_project, credentials=credentials)


def _is_not_found(exc: Exception) -> bool:
    try:
        from google.api_core.exceptions import NotFound
    except ImportError:
        return False
    return isinstance(exc, NotFound)


class FirestoreSourceReader(LegacySourceReader):
    source_name = "firestore"

    def __init__(
        self,
        *,
        project_id: str | None = None,
        service_account_json: str | None = None,
        credentials_file: str | None = None,
        client_factory: Callable[[], Any] | None = None,
    ) -> None:
        self._project_id = project_id
        self._service_account_json = service_account_json
        self._credentials_file = credentials_file
        self._client_factory = client_factory
        self._client: Any | None = None

    async def ping(self) -> None:
        try:
            client = self._get_client()
            await client.collection(_HEALTHCHECK_COLLECTION).limit(1).get()
        except (RuntimeError, ConfigurationError):
            raise
        except Exception as exc:
            raise SourceUnavailableError(f"firestore connection failed: {exc}") from exc

    async def list_collection(self, name: str) -> list[SourceDocument]:
        return await self._read(name)

    async def get_subcollection(self, parent_path: str, name: str) -> list[SourceDocument]:
        return await self._read(f"{parent_path.strip('/')}/{name}")

    async def close(self) -> None:
        if self._client is not None:
            close = getattr(self._client, "close", None)
            if close is not None:
                result = close()
                if hasattr(result, "__await__"):
                    await result
            self._client = None

    async def _read(self, path: str) -> list[SourceDocument]:
        client = self._get_client()
        try:
            snapshots = await client.collection(path).get()
        except Exception as exc:
            if _is_not_found(exc):
                raise CollectionNotFoundError(f"collection not found: {path}") from exc
            raise
        documents = [SourceDocument(doc_id=snapshot.id, data=snapshot.to_dict() or {}) for snapshot in snapshots]
        logger.info("firestore_collection_read", extra={"path": path, "document_count": len(documents)})
        return documents

    def _get_client(self) -> Any:
        if self._client is None:
            if self._client_factory is not None:
                self._client = self._client_factory()
            else:
                self._client = _default_client_factory(
                    self._project_id,
                    self._service_account_json,
                    self._credentials_file,
                )
        return self._client
