from __future__ import annotations

from abc import ABC, abstractmethod

from user_migration.core.models import SourceDocument


class LegacySourceReader(ABC):
    """Read-only access to the legacy document store.

    An existing but empty collection yields ``[]``; a collection that does not
    exist raises ``CollectionNotFoundError``.
    """

    source_name: str = "unknown"

    @abstractmethod
    async def ping(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_collection(self, name: str) -> list[SourceDocument]:
        raise NotImplementedError

    @abstractmethod
    async def get_subcollection(self, parent_path: str, name: str) -> list[SourceDocument]:
        raise NotImplementedError

    async def close(self) -> None:
        return None
