"""typeforge entity lifecycle hook system.

Datatypes declare ordered steps per phase (beforeCreate, afterGet, ...) for
themselves and may contribute steps into other datatypes' flows. Each step
names an action registered in a HookRegistry.

Usage:
    from typeforge.hooks import HookContext, HookRegistry

    registry = HookRegistry()

    @registry.action("stampSlug")
    def stamp_slug(ctx: HookContext) -> HookContext:
        ctx.payload["slug"] = ctx.payload["title"].lower().replace(" ", "-")
        return ctx
"""

from typeforge.hooks.engine import HookEngine
from typeforge.hooks.registry import HookRegistry
from typeforge.hooks.store import HookStore, load_hook_patches
from typeforge.hooks.types import (
    HOOK_PHASES,
    HookActionFn,
    HookContext,
    HookMeta,
    HookPatch,
    HookPhase,
    HookStep,
)

__all__ = [
    "HOOK_PHASES",
    "HookActionFn",
    "HookContext",
    "HookEngine",
    "HookMeta",
    "HookPatch",
    "HookPhase",
    "HookRegistry",
    "HookStep",
    "HookStore",
    "load_hook_patches",
]
