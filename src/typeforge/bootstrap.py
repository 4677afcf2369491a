"""Runtime assembly.

Wires the registry, storage, reference graph, hook store/registry/engine and
lifecycle service together from a directory of datatype YAML files.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from typeforge.entities.service import EntityLifecycleService
from typeforge.hooks.actions import EnrichLimits, register_builtin_actions
from typeforge.hooks.engine import HookEngine
from typeforge.hooks.registry import HookRegistry
from typeforge.hooks.store import HookStore, load_hook_patches
from typeforge.integrity.service import RefIntegrityService
from typeforge.metadata.loader import DatatypeLoader
from typeforge.metadata.registry import DatatypeRegistry
from typeforge.persistence.storage import Storage
from typeforge.validation.compiler import SchemaCache

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Everything one process needs to serve entity operations."""

    storage: Storage
    registry: DatatypeRegistry
    integrity: RefIntegrityService
    hook_store: HookStore
    hook_registry: HookRegistry
    engine: HookEngine
    entities: EntityLifecycleService
    schema_cache: SchemaCache = field(default_factory=SchemaCache)

    def refresh(self) -> None:
        """Rebuild the reference graph and hook flows from the registry.

        Call after registering, changing or publishing datatypes.
        """
        definitions = self.registry.list_all()
        self.integrity.rebuild(definitions)
        load_hook_patches(self.hook_store, definitions)

    async def close(self) -> None:
        await self.storage.close()


def create_runtime(storage: Storage, limits: EnrichLimits | None = None) -> Runtime:
    """Build an empty runtime over *storage* with built-in actions registered."""
    registry = DatatypeRegistry(storage)
    integrity = RefIntegrityService(storage, registry)
    hook_store = HookStore()
    hook_registry = HookRegistry()
    engine = HookEngine(hook_store, hook_registry)
    schema_cache = SchemaCache()
    register_builtin_actions(hook_registry, registry, storage, schema_cache, limits)
    entities = EntityLifecycleService(registry, storage, integrity, engine, schema_cache)
    return Runtime(
        storage=storage,
        registry=registry,
        integrity=integrity,
        hook_store=hook_store,
        hook_registry=hook_registry,
        engine=engine,
        entities=entities,
        schema_cache=schema_cache,
    )


async def build_runtime(
    datatypes_dir: Path,
    storage: Storage,
    limits: EnrichLimits | None = None,
) -> Runtime:
    """Load datatypes from *datatypes_dir* and return a ready runtime.

    Published datatypes get their storage materialized; the reference graph
    and hook flows are built from the full set in load order.
    """
    runtime = create_runtime(storage, limits)

    loader = DatatypeLoader(datatypes_dir)
    for definition in loader.load_all():
        runtime.registry.register(definition)

    published = await runtime.registry.materialize_published()
    runtime.refresh()

    logger.info(
        "Runtime ready: %d datatype(s), %d published, %d ref edge(s), actions: %s",
        len(runtime.registry.list_all()),
        published,
        len(runtime.integrity.graph.edges()),
        ", ".join(runtime.hook_registry.list_registered()),
    )
    return runtime
