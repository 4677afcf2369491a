"""Entity storage: protocol, implementations and factory."""

from typeforge.persistence.config import StorageConfig, create_storage
from typeforge.persistence.memory import MemoryStorage
from typeforge.persistence.sqlite import SQLiteStorage
from typeforge.persistence.storage import (
    CollectionInfo,
    DuplicateKeyError,
    Storage,
    resolve_collection,
)

__all__ = [
    "CollectionInfo",
    "DuplicateKeyError",
    "MemoryStorage",
    "SQLiteStorage",
    "Storage",
    "StorageConfig",
    "create_storage",
    "resolve_collection",
]
