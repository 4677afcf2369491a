"""In-process document storage.

Keeps documents in plain dicts keyed by collection and id. Used as the
default storage and throughout the test suite; semantics match
SQLiteStorage, including per-type unique indexes.
"""

import copy
from typing import Any

from typeforge.core.types import new_entity_id
from typeforge.persistence.storage import CollectionInfo, DuplicateKeyError, matches_value


class MemoryStorage:
    """Dict-backed storage adapter."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, dict[str, Any]]] = {}
        # collection -> list of (discriminator value or None, field key)
        self._unique: dict[str, list[tuple[str | None, str]]] = {}

    async def ensure_collection(self, info: CollectionInfo, unique_fields: list[str]) -> None:
        self.collections.setdefault(info.collection, {})
        indexes = self._unique.setdefault(info.collection, [])
        scope = info.discriminator[1] if info.discriminator else None
        for field_key in unique_fields:
            if (scope, field_key) not in indexes:
                indexes.append((scope, field_key))

    async def find_existing(self, info: CollectionInfo, ids: list[str]) -> list[str]:
        wanted = set(ids)
        return [doc_id for doc_id, _ in self._scoped(info) if doc_id in wanted]

    async def find(
        self,
        info: CollectionInfo,
        filter: dict[str, Any] | None = None,
        sort: list[tuple[str, int]] | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        docs = [
            self._to_public(info, doc_id, doc)
            for doc_id, doc in self._scoped(info)
            if self._matches(doc_id, doc, filter or {})
        ]
        for field_key, direction in reversed(sort or []):
            docs.sort(key=lambda d: _sort_key(d.get(field_key)), reverse=direction < 0)
        docs = docs[skip:]
        if limit is not None:
            docs = docs[:limit]
        return docs

    async def count(self, info: CollectionInfo, filter: dict[str, Any] | None = None) -> int:
        return sum(
            1 for doc_id, doc in self._scoped(info) if self._matches(doc_id, doc, filter or {})
        )

    async def insert(self, info: CollectionInfo, doc: dict[str, Any]) -> str:
        stored = copy.deepcopy(doc)
        stored.pop("id", None)
        if info.discriminator:
            stored[info.discriminator[0]] = info.discriminator[1]
        doc_id = new_entity_id()
        self._check_unique(info, doc_id, stored)
        self.collections.setdefault(info.collection, {})[doc_id] = stored
        return doc_id

    async def update_fields(
        self,
        info: CollectionInfo,
        id: str,
        patch: dict[str, Any],
        unset: tuple[str, ...] = (),
    ) -> bool:
        current = self._get(info, id)
        if current is None:
            return False
        updated = {**current, **copy.deepcopy(patch)}
        updated.pop("id", None)
        for field_key in unset:
            updated.pop(field_key, None)
        self._check_unique(info, id, updated)
        self.collections[info.collection][id] = updated
        return True

    async def pull_from_array(
        self, info: CollectionInfo, id: str, field: str, value: Any
    ) -> bool:
        current = self._get(info, id)
        if current is None or not isinstance(current.get(field), list):
            return False
        current[field] = [v for v in current[field] if v != value]
        return True

    async def delete(self, info: CollectionInfo, id: str) -> bool:
        if self._get(info, id) is None:
            return False
        del self.collections[info.collection][id]
        return True

    async def close(self) -> None:
        pass

    def _scoped(self, info: CollectionInfo):
        docs = self.collections.get(info.collection, {})
        for doc_id, doc in list(docs.items()):
            if info.discriminator:
                field_key, value = info.discriminator
                if doc.get(field_key) != value:
                    continue
            yield doc_id, doc

    def _get(self, info: CollectionInfo, id: str) -> dict[str, Any] | None:
        for doc_id, doc in self._scoped(info):
            if doc_id == id:
                return doc
        return None

    def _matches(self, doc_id: str, doc: dict[str, Any], filter: dict[str, Any]) -> bool:
        for field_key, cond in filter.items():
            stored = doc_id if field_key == "id" else doc.get(field_key)
            if isinstance(cond, dict) and "$in" in cond:
                if not any(matches_value(stored, v) for v in cond["$in"]):
                    return False
            elif isinstance(cond, dict) and "$ne" in cond:
                if matches_value(stored, cond["$ne"]):
                    return False
            elif not matches_value(stored, cond):
                return False
        return True

    def _check_unique(self, info: CollectionInfo, doc_id: str, doc: dict[str, Any]) -> None:
        scope = info.discriminator[1] if info.discriminator else None
        for index_scope, field_key in self._unique.get(info.collection, []):
            if index_scope != scope:
                continue
            value = doc.get(field_key)
            if value is None:
                continue
            for other_id, other in self._scoped(info):
                if other_id != doc_id and other.get(field_key) == value:
                    raise DuplicateKeyError(info.collection, field_key, value)

    def _to_public(self, info: CollectionInfo, doc_id: str, doc: dict[str, Any]) -> dict[str, Any]:
        out = {"id": doc_id}
        for k, v in doc.items():
            if info.discriminator and k == info.discriminator[0]:
                continue
            out[k] = copy.deepcopy(v)
        return out


def _sort_key(value: Any) -> tuple[bool, Any]:
    return (value is None, value if value is not None else 0)
