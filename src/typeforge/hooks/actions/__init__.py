"""Built-in hook actions."""

from typeforge.hooks.actions.enrich import EnrichAction, EnrichLimits
from typeforge.hooks.actions.validate import ValidateAction
from typeforge.hooks.registry import HookRegistry
from typeforge.persistence.storage import Storage
from typeforge.validation.compiler import SchemaCache


def register_builtin_actions(
    registry: HookRegistry,
    definitions,
    storage: Storage,
    schema_cache: SchemaCache,
    limits: EnrichLimits | None = None,
) -> None:
    """Register ``validate`` and ``enrich``. Called once at startup."""
    registry.register(ValidateAction.name, ValidateAction(definitions, schema_cache))
    registry.register(EnrichAction.name, EnrichAction(definitions, storage, limits))


__all__ = [
    "EnrichAction",
    "EnrichLimits",
    "ValidateAction",
    "register_builtin_actions",
]
