"""Field types, storage modes, delete policies and entity id helpers."""

import re
import secrets
from typing import Any

FIELD_TYPES: tuple[str, ...] = ("string", "number", "boolean", "date", "enum", "ref")

STORAGE_MODES: tuple[str, ...] = ("single", "perType")

ON_DELETE_POLICIES: tuple[str, ...] = ("restrict", "setNull", "cascade")

REF_CARDINALITIES: tuple[str, ...] = ("one", "many")

# Shared collection for "single" storage mode; entities are tagged by type.
SHARED_COLLECTION = "data_entities"
DISCRIMINATOR_FIELD = "__type"

ID_PATTERN = re.compile(r"[0-9a-fA-F]{24}")

KEY_PATTERN = re.compile(r"[A-Za-z][A-Za-z0-9_-]*")


def normalize_key(key: str) -> str:
    """Type keys are case-insensitive; everything internal uses lower case."""
    return str(key).strip().lower()


def new_entity_id() -> str:
    """Generate a 24-char lowercase hex id."""
    return secrets.token_hex(12)


def as_entity_id(value: Any) -> str | None:
    """Return the normalized id for a value, or None if it is not a valid id."""
    if not isinstance(value, str):
        return None
    if not ID_PATTERN.fullmatch(value):
        return None
    return value.lower()


def collection_name(type_key: str) -> str:
    """Dedicated collection name for a perType datatype."""
    return f"data_{normalize_key(type_key)}"
