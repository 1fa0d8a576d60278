import json

from google.api_core.exceptions import NotFound
import pytest

from user_migration.core.exceptions import CollectionNotFoundError, SourceUnavailableError
from user_migration.core.fields import StoreTimestamp
from user_migration.sources.firestore import FirestoreSourceReader
from user_migration.sources.jsonl import JsonlSourceReader
from user_migration.sources.memory import InMemorySourceReader


class FakeSnapshot:
    def __init__(self, doc_id: str, data: dict | None) -> None:
        self.id = doc_id
        self._data = data

    def to_dict(self) -> dict | None:
        return self._data


class FakeQuery:
    def __init__(self, client: "FakeFirestoreClient", path: str) -> None:
        self._client = client
        self._path = path

    def limit(self, count: int) -> "FakeQuery":
        return self

    async def get(self) -> list[FakeSnapshot]:
        if self._client.unreachable:
            raise ConnectionError("deadline exceeded")
        self._client.requested.append(self._path)
        return [FakeSnapshot(doc_id, data) for doc_id, data in self._client.collections.get(self._path, {}).items()]


class FakeFirestoreClient:
    def __init__(self, collections: dict, *, unreachable: bool = False) -> None:
        self.collections = collections
        self.unreachable = unreachable
        self.requested: list[str] = []
        self.closed = False

    def collection(self, path: str) -> FakeQuery:
        return FakeQuery(self, path)

    def close(self) -> None:
        self.closed = True


def _write_jsonl(path, rows) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(json.dumps(row) for row in rows) + "\n", encoding="utf-8")


@pytest.mark.asyncio
async def test_memory_reader_distinguishes_empty_from_missing() -> None:
    reader = InMemorySourceReader({"activities": {}})

    assert await reader.list_collection("activities") == []
    with pytest.raises(CollectionNotFoundError):
        await reader.list_collection("admins")


@pytest.mark.asyncio
async def test_jsonl_reader_decodes_exported_timestamps(tmp_path) -> None:
    _write_jsonl(
        tmp_path / "trusted_users.jsonl",
        [
            {"id": "tu1", "data": {"email": "a@x.com", "addedAt": {"_seconds": 1704067200, "_nanoseconds": 0}}},
            {"id": "tu2", "data": {"email": "b@x.com", "meta": {"seconds": 5, "nanoseconds": 1000, "zone": "x"}}},
        ],
    )
    reader = JsonlSourceReader(str(tmp_path))

    await reader.ping()
    first, second = await reader.list_collection("trusted_users")

    assert first.doc_id == "tu1"
    assert first.data["addedAt"] == StoreTimestamp(seconds=1704067200, nanoseconds=0)
    assert second.data["meta"] == {"seconds": 5, "nanoseconds": 1000, "zone": "x"}


@pytest.mark.asyncio
async def test_jsonl_reader_reads_subcollections(tmp_path) -> None:
    _write_jsonl(tmp_path / "admin_content" / "statistics" / "items.jsonl", [{"id": "s1", "data": {"label": "L"}}])

    [item] = await JsonlSourceReader(str(tmp_path)).get_subcollection("admin_content/statistics", "items")

    assert item.doc_id == "s1"
    assert item.data == {"label": "L"}


@pytest.mark.asyncio
async def test_jsonl_reader_errors(tmp_path) -> None:
    with pytest.raises(SourceUnavailableError):
        await JsonlSourceReader(str(tmp_path / "missing")).ping()
    with pytest.raises(CollectionNotFoundError):
        await JsonlSourceReader(str(tmp_path)).list_collection("users")

    (tmp_path / "users.jsonl").write_text('{"data": {}}\n', encoding="utf-8")
    with pytest.raises(ValueError):
        await JsonlSourceReader(str(tmp_path)).list_collection("users")


@pytest.mark.asyncio
async def test_firestore_reader_maps_snapshots() -> None:
    client = FakeFirestoreClient(
        {
            "users": {"u1": {"email": "a@x.com"}, "u2": None},
            "admin_content/statistics/items": {"s1": {"label": "L"}},
        }
    )
    reader = FirestoreSourceReader(client_factory=lambda: client)

    await reader.ping()
    users = await reader.list_collection("users")
    [item] = await reader.get_subcollection("admin_content/statistics", "items")
    await reader.close()

    assert [(doc.doc_id, dict(doc.data)) for doc in users] == [("u1", {"email": "a@x.com"}), ("u2", {})]
    assert item.doc_id == "s1"
    assert client.requested == ["_healthcheck", "users", "admin_content/statistics/items"]
    assert client.closed is True


@pytest.mark.asyncio
async def test_firestore_reader_ping_failure_is_source_unavailable() -> None:
    reader = FirestoreSourceReader(client_factory=lambda: FakeFirestoreClient({}, unreachable=True))
    with pytest.raises(SourceUnavailableError):
        await reader.ping()


@pytest.mark.asyncio
async def test_firestore_not_found_maps_to_missing_collection() -> None:
    class NotFoundClient(FakeFirestoreClient):
        def collection(self, path: str):
            client = self

            class _Query(FakeQuery):
                async def get(self):
                    raise NotFound("no such collection")

            return _Query(client, path)

    reader = FirestoreSourceReader(client_factory=lambda: NotFoundClient({}))
    with pytest.raises(CollectionNotFoundError):
        await reader.list_collection("admins")
