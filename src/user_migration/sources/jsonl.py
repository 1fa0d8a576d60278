from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from user_migration.core.exceptions import CollectionNotFoundError, SourceUnavailableError
from user_migration.core.fields import StoreTimestamp
from user_migration.core.models import SourceDocument
from user_migration.sources.base import LegacySourceReader

_TIMESTAMP_KEY_SETS = (
    frozenset({"_seconds", "_nanoseconds"}),
    frozenset({"seconds", "nanoseconds"}),
)


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        keys = frozenset(value.keys())
        if keys in _TIMESTAMP_KEY_SETS and all(isinstance(item, int) for item in value.values()):
            seconds = value.get("_seconds", value.get("seconds"))
            nanoseconds = value.get("_nanoseconds", value.get("nanoseconds"))
            return StoreTimestamp(seconds=seconds, nanoseconds=nanoseconds)
        return {key: _decode_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_decode_value(item) for item in value]
    return value


class JsonlSourceReader(LegacySourceReader):
    """Reads a JSONL export of the legacy store.

    ``<root>/<collection>.jsonl`` holds one ``{"id": ..., "data": {...}}`` object
    per line; subcollections live at ``<root>/<parent_path>/<name>.jsonl``.
    """

    source_name = "jsonl"

    def __init__(self, root: str) -> None:
        self._root = Path(root)

    async def ping(self) -> None:
        if not self._root.is_dir():
            raise SourceUnavailableError(f"export directory not found: {self._root}")

    async def list_collection(self, name: str) -> list[SourceDocument]:
        return self._read(self._root / f"{name}.jsonl")

    async def get_subcollection(self, parent_path: str, name: str) -> list[SourceDocument]:
        return self._read(self._root / parent_path.strip("/") / f"{name}.jsonl")

    def _read(self, path: Path) -> list[SourceDocument]:
        if not path.exists():
            raise CollectionNotFoundError(f"collection not found: {path}")
        documents: list[SourceDocument] = []
        for line_number, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
            if not line.strip():
                continue
            payload = json.loads(line)
            if not isinstance(payload, dict) or "id" not in payload:
                raise ValueError(f"{path}:{line_number}: expected an object with an 'id' field")
            data = payload.get("data") or {}
            if not isinstance(data, dict):
                raise ValueError(f"{path}:{line_number}: 'data' must be an object")
            documents.append(SourceDocument(doc_id=str(payload["id"]), data=_decode_value(data)))
        return documents
