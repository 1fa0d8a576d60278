from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from user_migration.core.exceptions import CollectionNotFoundError, SourceUnavailableError
from user_migration.core.models import SourceDocument
from user_migration.sources.base import LegacySourceReader


class InMemorySourceReader(LegacySourceReader):
    """Reader over ``{"collection": {"doc_id": {...}}}`` mappings.

    Subcollections are keyed by their full path, e.g.
    ``"admin_content/statistics/items"``.
    """

    source_name = "memory"

    def __init__(
        self,
        collections: Mapping[str, Mapping[str, Mapping[str, Any]]] | None = None,
        *,
        available: bool = True,
    ) -> None:
        self._collections = {name: dict(docs) for name, docs in (collections or {}).items()}
        self._available = available

    async def ping(self) -> None:
        if not self._available:
            raise SourceUnavailableError("in-memory source marked unavailable")

    async def list_collection(self, name: str) -> list[SourceDocument]:
        return self._read(name)

    async def get_subcollection(self, parent_path: str, name: str) -> list[SourceDocument]:
        return self._read(f"{parent_path.strip('/')}/{name}")

    def _read(self, path: str) -> list[SourceDocument]:
        docs = self._collections.get(path)
        if docs is None:
            raise CollectionNotFoundError(f"collection not found: {path}")
        return [SourceDocument(doc_id=doc_id, data=data) for doc_id, data in docs.items()]
