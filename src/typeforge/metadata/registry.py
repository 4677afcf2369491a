"""Datatype definition registry.

Holds every known datatype definition in load order and owns the
draft -> published transition. Publishing freezes a datatype's field
composition and materializes its backing collection and unique indexes.
"""

import dataclasses
import logging

from typeforge.core.types import normalize_key
from typeforge.errors import UnknownTypeError, UnpublishedTypeError
from typeforge.metadata.loader import DatatypeDefinition, FieldSpec
from typeforge.persistence.storage import Storage, resolve_collection

logger = logging.getLogger(__name__)


class DatatypeRegistry:
    """In-memory registry of datatype definitions.

    Example:
        registry = DatatypeRegistry(storage)
        for definition in loader.load_all():
            registry.register(definition)
        await registry.materialize_published()
    """

    def __init__(self, storage: Storage):
        self.storage = storage
        self._definitions: dict[str, DatatypeDefinition] = {}

    def register(self, definition: DatatypeDefinition) -> None:
        """Add or replace a definition. Replacing keeps the original load position."""
        self._definitions[definition.key_lower] = definition

    def get(self, key: str) -> DatatypeDefinition | None:
        return self._definitions.get(normalize_key(key))

    def get_published(self, key: str) -> DatatypeDefinition:
        """Get a datatype that accepts entity operations.

        Raises:
            UnknownTypeError: No datatype with this key
            UnpublishedTypeError: The datatype is still a draft
        """
        definition = self.get(key)
        if definition is None:
            raise UnknownTypeError(normalize_key(key))
        if not definition.is_published:
            raise UnpublishedTypeError(definition.key_lower)
        return definition

    def list_all(self) -> list[DatatypeDefinition]:
        return list(self._definitions.values())

    def add_field(self, key: str, field_spec: FieldSpec) -> DatatypeDefinition:
        """Append a field to a draft datatype, bumping its version."""
        definition = self.get(key)
        if definition is None:
            raise UnknownTypeError(normalize_key(key))
        if definition.is_published:
            raise ValueError(
                f"Datatype '{definition.key_lower}' is published; its fields are frozen"
            )
        if definition.get_field(field_spec.key):
            raise ValueError(
                f"Datatype '{definition.key_lower}' already has field '{field_spec.key}'"
            )
        if field_spec.unique and field_spec.array:
            raise ValueError(f"Field '{field_spec.key}' cannot be both unique and array")

        updated = dataclasses.replace(
            definition,
            fields=(*definition.fields, field_spec),
            version=definition.version + 1,
        )
        self._definitions[definition.key_lower] = updated
        return updated

    async def publish(self, key: str) -> DatatypeDefinition:
        """Publish a draft datatype and materialize its storage."""
        definition = self.get(key)
        if definition is None:
            raise UnknownTypeError(normalize_key(key))
        if not definition.is_published:
            definition = dataclasses.replace(definition, status="published")
            self._definitions[definition.key_lower] = definition
        await self._materialize(definition)
        return definition

    async def materialize_published(self) -> int:
        """Ensure storage exists for every published datatype. Returns the count."""
        published = [d for d in self._definitions.values() if d.is_published]
        for definition in published:
            await self._materialize(definition)
        return len(published)

    async def _materialize(self, definition: DatatypeDefinition) -> None:
        info = resolve_collection(definition)
        unique_fields = [f.key for f in definition.fields if f.unique]
        await self.storage.ensure_collection(info, unique_fields)
        logger.info(
            "Published datatype %s v%d -> %s (unique: %s)",
            definition.key_lower,
            definition.version,
            info.collection,
            ", ".join(unique_fields) or "none",
        )
