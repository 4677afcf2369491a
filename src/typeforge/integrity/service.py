"""Referential integrity enforcement.

Two enforcement points:
- create/update: every referenced id must exist (one batched query per field)
- delete: incoming edges apply restrict / setNull / cascade

Delete runs in two passes. The first walks cascade edges breadth-first,
collecting the full delete set with a visited set keyed by ``(type, id)``,
then checks restrict edges for referrers outside that set. Only when nothing
blocks does the second pass unset/pull references and delete cascaded
entities, so a restrict failure leaves storage untouched.
"""

import logging
from collections import deque
from collections.abc import Iterable
from typing import Any, Protocol

from typeforge.core.types import normalize_key
from typeforge.errors import RefMissingError, RefRestrictError
from typeforge.integrity.graph import RefEdge, RefGraph, build_edges
from typeforge.metadata.loader import DatatypeDefinition
from typeforge.persistence.storage import CollectionInfo, Storage, resolve_collection

logger = logging.getLogger(__name__)


class DefinitionLookup(Protocol):
    def get(self, key: str) -> DatatypeDefinition | None: ...


class RefIntegrityService:
    """Owns the reference graph and enforces it against storage."""

    def __init__(self, storage: Storage, definitions: DefinitionLookup):
        self.storage = storage
        self.definitions = definitions
        self.graph = RefGraph()

    def rebuild(self, definitions: Iterable[DatatypeDefinition]) -> int:
        """Rebuild the graph from the full datatype set. Returns the edge count."""
        edges = build_edges(definitions)
        self.graph.set_edges(edges)
        logger.info("Ref graph built with %d edge(s)", len(edges))
        return len(edges)

    def incoming(self, type_key: str) -> list[RefEdge]:
        return self.graph.incoming(type_key)

    def outgoing(self, type_key: str) -> list[RefEdge]:
        return self.graph.outgoing(type_key)

    def _collection(self, type_key: str) -> CollectionInfo | None:
        definition = self.definitions.get(type_key)
        if definition is None:
            return None
        return resolve_collection(definition)

    async def missing_ids(self, target: str, ids: list[str]) -> list[str]:
        """Return the subset of *ids* with no entity of type *target*."""
        if not ids:
            return []
        info = self._collection(target)
        if info is None:
            return list(ids)
        found = set(await self.storage.find_existing(info, ids))
        return [i for i in ids if i not in found]

    async def check_refs_exist(self, type_key: str, payload: dict[str, Any]) -> None:
        """Verify every ref value present in *payload* points at an existing entity.

        Raises:
            RefMissingError: First field with one or more dangling ids
        """
        type_key = normalize_key(type_key)
        for edge in self.outgoing(type_key):
            value = payload.get(edge.field_key)
            if value is None:
                continue
            values = value if isinstance(value, list) else [value]
            ids = list(dict.fromkeys(str(v).lower() for v in values))
            missing = await self.missing_ids(edge.to_type, ids)
            if missing:
                raise RefMissingError(type_key, edge.field_key, edge.to_type, missing)

    async def _referrers(self, edge: RefEdge, entity_id: str) -> list[str]:
        info = self._collection(edge.from_type)
        if info is None:
            return []
        docs = await self.storage.find(info, {edge.field_key: entity_id})
        return [doc["id"] for doc in docs]

    async def apply_delete_policy(self, type_key: str, entity_id: str) -> list[dict[str, str]]:
        """Enforce incoming-edge policies for deleting ``type_key``/``entity_id``.

        The root entity itself is not deleted here.

        Returns:
            Cascaded entities that were deleted, as ``{"type", "id"}`` dicts

        Raises:
            RefRestrictError: A restrict edge has referrers outside the delete set
        """
        root = (normalize_key(type_key), entity_id)

        # Pass 1: collect the delete set
        delete_set: dict[tuple[str, str], None] = {root: None}
        queue: deque[tuple[str, str]] = deque([root])
        while queue:
            current_type, current_id = queue.popleft()
            for edge in self.incoming(current_type):
                if edge.on_delete != "cascade":
                    continue
                for referrer_id in await self._referrers(edge, current_id):
                    node = (edge.from_type, referrer_id)
                    if node not in delete_set:
                        delete_set[node] = None
                        queue.append(node)

        blocking: list[dict[str, Any]] = []
        for node_type, node_id in delete_set:
            for edge in self.incoming(node_type):
                if edge.on_delete != "restrict":
                    continue
                outside = [
                    r
                    for r in await self._referrers(edge, node_id)
                    if (edge.from_type, r) not in delete_set
                ]
                if outside:
                    blocking.append(
                        {"from": edge.from_type, "field": edge.field_key, "count": len(outside)}
                    )
        if blocking:
            raise RefRestrictError(root[0], root[1], blocking)

        # Pass 2: detach setNull referrers, then delete cascaded entities
        for node_type, node_id in delete_set:
            for edge in self.incoming(node_type):
                if edge.on_delete != "setNull":
                    continue
                info = self._collection(edge.from_type)
                if info is None:
                    continue
                for referrer_id in await self._referrers(edge, node_id):
                    if (edge.from_type, referrer_id) in delete_set:
                        continue
                    if edge.many:
                        await self.storage.pull_from_array(
                            info, referrer_id, edge.field_key, node_id
                        )
                    else:
                        await self.storage.update_fields(
                            info, referrer_id, {}, unset=(edge.field_key,)
                        )

        cascaded: list[dict[str, str]] = []
        for node_type, node_id in delete_set:
            if (node_type, node_id) == root:
                continue
            info = self._collection(node_type)
            if info is not None and await self.storage.delete(info, node_id):
                cascaded.append({"type": node_type, "id": node_id})
        if cascaded:
            logger.info(
                "Delete of %s %s cascaded to %d entit(ies)", root[0], root[1], len(cascaded)
            )
        return cascaded
