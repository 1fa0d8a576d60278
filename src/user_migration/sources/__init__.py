from user_migration.sources.base import LegacySourceReader
from user_migration.sources.firestore import FirestoreSourceReader
from user_migration.sources.jsonl import JsonlSourceReader
from user_migration.sources.memory import InMemorySourceReader

__all__ = [
    "FirestoreSourceReader",
    "InMemorySourceReader",
    "JsonlSourceReader",
    "LegacySourceReader",
]
