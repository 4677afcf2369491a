"""Storage configuration and factory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typeforge.persistence.storage import Storage


@dataclass
class StorageConfig:
    """Entity storage configuration.

    Supports memory:// and sqlite:/// URL schemes.
    """

    url: str

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Create config from TYPEFORGE_STORAGE_URL, defaulting to memory://."""
        return cls(url=os.environ.get("TYPEFORGE_STORAGE_URL") or "memory://")

    @property
    def is_memory(self) -> bool:
        return self.url.startswith("memory://")

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite:///")


def create_storage(config: StorageConfig) -> Storage:
    """Create a connected storage implementation based on the URL scheme.

    Raises:
        ValueError: For unsupported URL schemes.
    """
    if config.is_memory:
        from typeforge.persistence.memory import MemoryStorage

        return MemoryStorage()

    if config.is_sqlite:
        from typeforge.persistence.sqlite import SQLiteStorage

        db_path = config.url.replace("sqlite:///", "", 1) or ":memory:"
        storage = SQLiteStorage(db_path)
        storage.connect()
        return storage

    raise ValueError(f"Unsupported storage URL scheme: {config.url}")
