"""Storage Protocol: shared interface for all entity document stores."""

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from typeforge.core.types import (
    DISCRIMINATOR_FIELD,
    SHARED_COLLECTION,
    collection_name,
)
from typeforge.errors import CollectionResolutionError
from typeforge.metadata.loader import DatatypeDefinition


@dataclass(frozen=True)
class CollectionInfo:
    """Where a datatype's entities live.

    ``discriminator`` is set for shared-collection ("single") storage: entities
    are tagged with ``(field, value)`` and every query is scoped by it.
    """

    collection: str
    discriminator: tuple[str, str] | None = None


class DuplicateKeyError(Exception):
    """Raised by storage when a write violates a unique index."""

    def __init__(self, collection: str, field_key: str, value: Any = None):
        super().__init__(
            f"Duplicate value for unique field '{field_key}' in {collection}"
        )
        self.collection = collection
        self.field_key = field_key
        self.value = value


def resolve_collection(definition: DatatypeDefinition) -> CollectionInfo:
    """Resolve a datatype's storage location from its storage mode."""
    key = definition.key_lower
    if definition.storage == "perType":
        return CollectionInfo(collection=collection_name(key))
    if definition.storage == "single":
        return CollectionInfo(
            collection=SHARED_COLLECTION,
            discriminator=(DISCRIMINATOR_FIELD, key),
        )
    raise CollectionResolutionError(key, f"Unknown storage mode: {definition.storage}")


def matches_value(stored: Any, expected: Any) -> bool:
    """Equality that also matches arrays containing the expected value."""
    if isinstance(stored, list):
        return expected in stored
    return stored == expected


@runtime_checkable
class Storage(Protocol):
    """Interface all entity storage implementations must implement.

    Filters are ``{field: value}`` (equal scalar or array containing value),
    ``{field: {"$in": [...]}}`` or ``{field: {"$ne": value}}``; ``id`` addresses
    the entity id. Returned documents carry ``id`` and never the discriminator.
    """

    async def ensure_collection(
        self, info: CollectionInfo, unique_fields: list[str]
    ) -> None: ...

    async def find_existing(self, info: CollectionInfo, ids: list[str]) -> list[str]: ...

    async def find(
        self,
        info: CollectionInfo,
        filter: dict[str, Any] | None = None,
        sort: list[tuple[str, int]] | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def count(self, info: CollectionInfo, filter: dict[str, Any] | None = None) -> int: ...

    async def insert(self, info: CollectionInfo, doc: dict[str, Any]) -> str: ...

    async def update_fields(
        self,
        info: CollectionInfo,
        id: str,
        patch: dict[str, Any],
        unset: tuple[str, ...] = (),
    ) -> bool: ...

    async def pull_from_array(
        self, info: CollectionInfo, id: str, field: str, value: Any
    ) -> bool: ...

    async def delete(self, info: CollectionInfo, id: str) -> bool: ...

    async def close(self) -> None: ...
