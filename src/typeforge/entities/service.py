"""Entity lifecycle service.

Orchestrates one CRUD operation end to end:

1. Resolve the published datatype and its storage location
2. Validate/coerce the payload (create: required enforced, update: partial)
3. Run the ``before*`` phase
4. Enforce uniqueness and reference existence (create/update) or
   the incoming-reference delete policy (delete)
5. Persist
6. Run the ``after*`` phase with ``result`` populated and return it
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from typeforge.core.types import as_entity_id
from typeforge.errors import (
    EntityNotFoundError,
    UniqueViolationError,
    ValidationFailedError,
)
from typeforge.hooks.engine import HookEngine
from typeforge.hooks.types import HookContext, HookMeta, HookPhase
from typeforge.integrity.service import RefIntegrityService
from typeforge.metadata.loader import DatatypeDefinition
from typeforge.metadata.registry import DatatypeRegistry
from typeforge.persistence.storage import (
    CollectionInfo,
    DuplicateKeyError,
    Storage,
    resolve_collection,
)
from typeforge.validation.compiler import SchemaCache
from typeforge.validation.types import Mode

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
LIST_RESERVED = frozenset({"page", "pageSize", "sortBy", "sortDir"})
SYSTEM_FIELDS = ("id", "createdAt", "updatedAt")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _positive_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number >= 1 else default


class EntityLifecycleService:
    """Create, read, update, delete and list entities of published datatypes."""

    def __init__(
        self,
        registry: DatatypeRegistry,
        storage: Storage,
        integrity: RefIntegrityService,
        hooks: HookEngine,
        schema_cache: SchemaCache | None = None,
    ):
        self.registry = registry
        self.storage = storage
        self.integrity = integrity
        self.hooks = hooks
        self.schema_cache = schema_cache or SchemaCache()

    # =========================================================================
    # Operations
    # =========================================================================

    async def create(
        self, type_key: str, payload: Any, request_id: str | None = None
    ) -> dict[str, Any]:
        definition = self.registry.get_published(type_key)
        key = definition.key_lower
        info = resolve_collection(definition)

        value = self._validate(definition, Mode.CREATE, payload)
        meta = HookMeta(type_key=key, request_id=request_id)
        ctx = HookContext(payload=value, meta=meta)
        ctx = await self.hooks.run_phase(key, HookPhase.BEFORE_CREATE, ctx)

        doc = self._declared(definition, ctx.payload)
        await self._ensure_unique(definition, info, doc)
        await self.integrity.check_refs_exist(key, doc)

        now = _now()
        doc["createdAt"] = now
        doc["updatedAt"] = now
        try:
            entity_id = await self.storage.insert(info, doc)
        except DuplicateKeyError as e:
            raise UniqueViolationError(key, e.field_key, doc.get(e.field_key)) from e

        stored = await self._fetch(definition, info, entity_id)
        ctx.meta.extra["id"] = entity_id
        ctx = await self.hooks.run_phase(
            key,
            HookPhase.AFTER_CREATE,
            HookContext(payload=ctx.payload, meta=ctx.meta, result=stored),
        )
        return ctx.result

    async def get(
        self, type_key: str, entity_id: str, request_id: str | None = None
    ) -> dict[str, Any]:
        definition = self.registry.get_published(type_key)
        key = definition.key_lower
        info = resolve_collection(definition)
        entity_id = self._parse_id(key, entity_id)

        meta = HookMeta(type_key=key, request_id=request_id)
        ctx = HookContext(payload={"id": entity_id}, meta=meta)
        ctx = await self.hooks.run_phase(key, HookPhase.BEFORE_GET, ctx)

        stored = await self._fetch(definition, info, entity_id)
        ctx = await self.hooks.run_phase(
            key,
            HookPhase.AFTER_GET,
            HookContext(payload=ctx.payload, meta=ctx.meta, result=stored),
        )
        return ctx.result

    async def update(
        self, type_key: str, entity_id: str, changes: Any, request_id: str | None = None
    ) -> dict[str, Any]:
        definition = self.registry.get_published(type_key)
        key = definition.key_lower
        info = resolve_collection(definition)
        entity_id = self._parse_id(key, entity_id)
        value = self._validate(definition, Mode.UPDATE, changes)
        await self._fetch(definition, info, entity_id)

        meta = HookMeta(type_key=key, request_id=request_id, extra={"id": entity_id})
        ctx = HookContext(payload=value, meta=meta)
        ctx = await self.hooks.run_phase(key, HookPhase.BEFORE_UPDATE, ctx)

        patch = self._declared(definition, ctx.payload)
        await self._ensure_unique(definition, info, patch, exclude_id=entity_id)
        await self.integrity.check_refs_exist(key, patch)

        patch["updatedAt"] = _now()
        try:
            updated = await self.storage.update_fields(info, entity_id, patch)
        except DuplicateKeyError as e:
            raise UniqueViolationError(key, e.field_key, patch.get(e.field_key)) from e
        if not updated:
            raise EntityNotFoundError(key, entity_id)

        stored = await self._fetch(definition, info, entity_id)
        ctx = await self.hooks.run_phase(
            key,
            HookPhase.AFTER_UPDATE,
            HookContext(payload=ctx.payload, meta=ctx.meta, result=stored),
        )
        return ctx.result

    async def delete(
        self, type_key: str, entity_id: str, request_id: str | None = None
    ) -> dict[str, Any]:
        definition = self.registry.get_published(type_key)
        key = definition.key_lower
        info = resolve_collection(definition)
        entity_id = self._parse_id(key, entity_id)
        await self._fetch(definition, info, entity_id)

        meta = HookMeta(type_key=key, request_id=request_id)
        ctx = HookContext(payload={"id": entity_id}, meta=meta)
        ctx = await self.hooks.run_phase(key, HookPhase.BEFORE_DELETE, ctx)

        cascaded = await self.integrity.apply_delete_policy(key, entity_id)
        if not await self.storage.delete(info, entity_id):
            raise EntityNotFoundError(key, entity_id)

        result = {"deleted": True, "id": entity_id, "cascaded": cascaded}
        ctx = await self.hooks.run_phase(
            key,
            HookPhase.AFTER_DELETE,
            HookContext(payload=ctx.payload, meta=ctx.meta, result=result),
        )
        return ctx.result

    async def list(
        self,
        type_key: str,
        query: dict[str, Any] | None = None,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        """List entities with pagination, sorting and equality filters.

        Query keys: ``page`` (default 1), ``pageSize`` (default 20, max 100),
        ``sortBy`` (declared field, ``id``, ``createdAt`` or ``updatedAt``),
        ``sortDir`` (``asc``/``desc``). Any other key naming a declared field
        is an equality filter; list values match any of the values.
        """
        definition = self.registry.get_published(type_key)
        key = definition.key_lower
        info = resolve_collection(definition)
        query = dict(query or {})

        meta = HookMeta(type_key=key, request_id=request_id)
        ctx = HookContext(payload={"query": query}, meta=meta)
        ctx = await self.hooks.run_phase(key, HookPhase.BEFORE_LIST, ctx)
        query = ctx.payload.get("query", query) if isinstance(ctx.payload, dict) else query

        page = _positive_int(query.get("page"), 1)
        page_size = min(_positive_int(query.get("pageSize"), DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)
        filter, sort = self._build_list_query(definition, query)

        total = await self.storage.count(info, filter)
        items = await self.storage.find(
            info, filter, sort=sort, skip=(page - 1) * page_size, limit=page_size
        )

        result = {"items": items, "page": page, "pageSize": page_size, "total": total}
        ctx = await self.hooks.run_phase(
            key,
            HookPhase.AFTER_LIST,
            HookContext(payload=ctx.payload, meta=ctx.meta, result=result),
        )
        return ctx.result

    # =========================================================================
    # Helpers
    # =========================================================================

    def _validate(self, definition: DatatypeDefinition, mode: Mode, payload: Any) -> dict[str, Any]:
        outcome = self.schema_cache.get(definition, mode).validate(payload)
        if not outcome.ok:
            raise ValidationFailedError(definition.key_lower, outcome.errors)
        return outcome.value

    def _declared(self, definition: DatatypeDefinition, payload: Any) -> dict[str, Any]:
        """Restrict a (possibly hook-modified) payload to declared field keys."""
        if not isinstance(payload, dict):
            raise ValidationFailedError(definition.key_lower, {"payload": "expected_object"})
        declared = {f.key for f in definition.fields}
        return {k: v for k, v in payload.items() if k in declared and v is not None}

    def _parse_id(self, type_key: str, entity_id: Any) -> str:
        parsed = as_entity_id(entity_id)
        if parsed is None:
            raise EntityNotFoundError(type_key, str(entity_id))
        return parsed

    async def _fetch(
        self, definition: DatatypeDefinition, info: CollectionInfo, entity_id: str
    ) -> dict[str, Any]:
        docs = await self.storage.find(info, {"id": entity_id}, limit=1)
        if not docs:
            raise EntityNotFoundError(definition.key_lower, entity_id)
        return docs[0]

    async def _ensure_unique(
        self,
        definition: DatatypeDefinition,
        info: CollectionInfo,
        doc: dict[str, Any],
        exclude_id: str | None = None,
    ) -> None:
        for f in definition.fields:
            if not f.unique or f.array:
                continue
            value = doc.get(f.key)
            if value is None:
                continue
            filter: dict[str, Any] = {f.key: value}
            if exclude_id:
                filter["id"] = {"$ne": exclude_id}
            if await self.storage.count(info, filter):
                raise UniqueViolationError(definition.key_lower, f.key, value)

    def _build_list_query(
        self, definition: DatatypeDefinition, query: dict[str, Any]
    ) -> tuple[dict[str, Any], list[tuple[str, int]]]:
        schema = self.schema_cache.get(definition, Mode.UPDATE)
        filter: dict[str, Any] = {}
        for k, v in query.items():
            if k in LIST_RESERVED or v is None:
                continue
            if definition.get_field(k) is None:
                continue
            if isinstance(v, (list, tuple)):
                filter[k] = {"$in": [schema.coerce_scalar(k, item) for item in v]}
            else:
                filter[k] = schema.coerce_scalar(k, v)

        sort_by = query.get("sortBy") or "id"
        if sort_by not in SYSTEM_FIELDS and definition.get_field(sort_by) is None:
            raise ValidationFailedError(definition.key_lower, {"sortBy": "unknown_field"})
        sort_dir = -1 if str(query.get("sortDir", "asc")).lower() == "desc" else 1
        return filter, [(sort_by, sort_dir)]
