"""Built-in ``enrich`` action: resolve referenced entities into read results.

Traversal is breadth-first by depth level. At each level the ids referenced
by the current nodes are grouped per target type and fetched with one batched
query per type; resolved documents are attached under ``<field>Resolved`` and
become the next level's nodes. A per-run cache keyed by ``(type, id)`` keeps
every id fetched at most once.

Two ceilings bound the work:
- fanout: ids beyond the limit on one array field of one document are dropped
  and the document is flagged ``__enrichTruncated``
- node limit: once the planned fetch count for the run exceeds it, nothing
  more is fetched and the current level's documents are flagged
"""

import dataclasses
import logging
import os
from dataclasses import dataclass
from typing import Any

from jsonschema import Draft202012Validator

from typeforge.core.types import as_entity_id
from typeforge.hooks.actions.args import check_args
from typeforge.hooks.types import HookContext, HookPhase
from typeforge.persistence.storage import Storage, resolve_collection

logger = logging.getLogger(__name__)

MAX_DEPTH = 5
TRUNCATED_FLAG = "__enrichTruncated"
DEFAULT_NODE_LIMIT = 10000
DEFAULT_FANOUT_LIMIT = 1000

ARGS_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "required": ["with"],
    "properties": {
        "with": {
            "type": "array",
            "items": {"type": "string", "minLength": 1},
            "minItems": 1,
        },
        "maxDepth": {"type": "integer", "minimum": 0},
        "select": {
            "type": "object",
            "additionalProperties": {"type": "array", "items": {"type": "string"}},
        },
        "paths": {
            "type": "object",
            "propertyNames": {"pattern": "^[1-5]$"},
            "additionalProperties": {
                "type": "array",
                "items": {"type": "string", "minLength": 1},
                "minItems": 1,
            },
        },
    },
}


def _env_limit(name: str, default: int) -> int:
    try:
        value = int(os.environ.get(name, default))
    except ValueError:
        return default
    return max(1, value)


@dataclass(frozen=True)
class EnrichLimits:
    node_limit: int = DEFAULT_NODE_LIMIT
    fanout_limit: int = DEFAULT_FANOUT_LIMIT

    @classmethod
    def from_env(cls) -> "EnrichLimits":
        """Read TYPEFORGE_ENRICH_NODE_LIMIT / TYPEFORGE_ENRICH_FANOUT_LIMIT."""
        return cls(
            node_limit=_env_limit("TYPEFORGE_ENRICH_NODE_LIMIT", DEFAULT_NODE_LIMIT),
            fanout_limit=_env_limit("TYPEFORGE_ENRICH_FANOUT_LIMIT", DEFAULT_FANOUT_LIMIT),
        )


@dataclass
class _Node:
    type_key: str
    doc: dict[str, Any]


def _project(doc: dict[str, Any], fields: list[str] | None) -> dict[str, Any]:
    if fields is None:
        return dict(doc)
    out = {k: doc[k] for k in fields if k in doc}
    if "id" in doc:
        out["id"] = doc["id"]
    return out


class EnrichAction:
    """Attaches referenced entities to ``afterGet``/``afterList`` results.

    Args:
        with: ref field keys to resolve at depth 0 (required, non-empty)
        maxDepth: levels to follow beyond the first (default 0, clamped to 5)
        paths: per-depth field lists, keyed "1".."5"; missing depths reuse ``with``
        select: per-target-type field projection (``id`` always kept)
    """

    name = "enrich"

    def __init__(self, definitions, storage: Storage, limits: EnrichLimits | None = None):
        self.definitions = definitions
        self.storage = storage
        self.limits = limits or EnrichLimits()
        self._args_validator = Draft202012Validator(ARGS_SCHEMA)

    async def __call__(self, ctx: HookContext) -> HookContext:
        args = check_args(self.name, self._args_validator, ctx.meta.step_args)

        if ctx.meta.phase not in (HookPhase.AFTER_GET, HookPhase.AFTER_LIST):
            return ctx
        if ctx.result is None:
            return ctx

        max_depth = args.get("maxDepth", 0)
        if max_depth > MAX_DEPTH:
            logger.debug("maxDepth %d > %d; clamping", max_depth, MAX_DEPTH)
            max_depth = MAX_DEPTH

        result = ctx.result
        if isinstance(result, dict) and isinstance(result.get("items"), list):
            docs = result["items"]
        elif isinstance(result, list):
            docs = result
        else:
            docs = [result]

        run = _EnrichRun(self, args, max_depth)
        await run.execute([_Node(ctx.meta.type_key, d) for d in docs if isinstance(d, dict)])
        return dataclasses.replace(ctx, result=result)


class _EnrichRun:
    """State for one enrichment run; never shared between requests."""

    def __init__(self, action: EnrichAction, args: dict[str, Any], max_depth: int):
        self.action = action
        self.with_keys: list[str] = args["with"]
        self.paths: dict[str, list[str]] = args.get("paths") or {}
        self.select: dict[str, list[str]] = args.get("select") or {}
        self.max_depth = max_depth
        self.node_limit = action.limits.node_limit
        self.fanout_limit = action.limits.fanout_limit
        # (type, id) -> document, or None when fetched but missing
        self.cache: dict[tuple[str, str], dict[str, Any] | None] = {}
        self.node_count = 0
        self.warned_fanout = False
        self.warned_node_limit = False

    def _fields_at(self, depth: int) -> list[str]:
        if depth == 0:
            return self.with_keys
        return self.paths.get(str(depth), self.with_keys)

    def _ref_fields(self, type_key: str, field_keys: list[str]):
        definition = self.action.definitions.get(type_key)
        if definition is None:
            return []
        specs = []
        for key in field_keys:
            spec = definition.get_field(key)
            if spec is not None and spec.is_ref and spec.ref_target:
                specs.append(spec)
        return specs

    def _ids_for(self, node: _Node, spec) -> list[str]:
        value = node.doc.get(spec.key)
        values = value if isinstance(value, list) else [value]
        ids = [i for i in (as_entity_id(v) for v in values) if i is not None]
        if isinstance(value, list) and len(ids) > self.fanout_limit:
            if not self.warned_fanout:
                logger.warning("enrich fanout exceeded %d; truncating", self.fanout_limit)
                self.warned_fanout = True
            node.doc[TRUNCATED_FLAG] = True
            ids = ids[: self.fanout_limit]
        return ids

    async def execute(self, current: list[_Node]) -> None:
        for depth in range(self.max_depth + 1):
            field_keys = self._fields_at(depth)
            if not current or not field_keys:
                return

            # Plan: target type -> ids not yet cached
            plan: dict[str, dict[str, None]] = {}
            for node in current:
                for spec in self._ref_fields(node.type_key, field_keys):
                    if node.doc.get(spec.key) is None:
                        continue
                    bucket = plan.setdefault(spec.ref_target, {})
                    for entity_id in self._ids_for(node, spec):
                        if (spec.ref_target, entity_id) in self.cache or entity_id in bucket:
                            continue
                        bucket[entity_id] = None
                        self.node_count += 1

            if self.node_count > self.node_limit:
                if not self.warned_node_limit:
                    logger.warning(
                        "enrich node limit exceeded %d; truncating further expansion",
                        self.node_limit,
                    )
                    self.warned_node_limit = True
                for node in current:
                    node.doc[TRUNCATED_FLAG] = True
                # Resolve what is already cached; the planned fetches are dropped.
                self._attach(current, field_keys)
                return

            for target, ids in plan.items():
                await self._fetch(target, list(ids))

            current = self._attach(current, field_keys)

    async def _fetch(self, target: str, ids: list[str]) -> None:
        if not ids:
            return
        for entity_id in ids:
            self.cache[(target, entity_id)] = None
        definition = self.action.definitions.get(target)
        if definition is None:
            return
        info = resolve_collection(definition)
        for doc in await self.action.storage.find(info, {"id": {"$in": ids}}):
            self.cache[(target, doc["id"])] = doc

    def _attach(self, current: list[_Node], field_keys: list[str]) -> list[_Node]:
        next_nodes: list[_Node] = []
        for node in current:
            for spec in self._ref_fields(node.type_key, field_keys):
                target = spec.ref_target
                out_key = f"{spec.key}Resolved"
                value = node.doc.get(spec.key)
                if value is None:
                    node.doc[out_key] = [] if spec.array else None
                    continue
                pick = self.select.get(target)
                if isinstance(value, list):
                    ids = [i for i in (as_entity_id(v) for v in value) if i is not None]
                    resolved = [
                        _project(self.cache[(target, i)], pick)
                        for i in ids[: self.fanout_limit]
                        if self.cache.get((target, i)) is not None
                    ]
                    node.doc[out_key] = resolved
                    next_nodes.extend(_Node(target, d) for d in resolved)
                else:
                    entity_id = as_entity_id(value)
                    doc = self.cache.get((target, entity_id)) if entity_id else None
                    attached = _project(doc, pick) if doc is not None else None
                    node.doc[out_key] = attached
                    if attached is not None:
                        next_nodes.append(_Node(target, attached))
        return next_nodes
