"""Hook store: ordered phase flows per target type.

Patches accumulate in apply order; for a given type and phase the steps of
every patch are concatenated in that same order. ``load_hook_patches`` fixes
the order: each datatype's own hooks first (in load order), then every
contribution (in the load order of the contributing datatype).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from typeforge.core.types import normalize_key
from typeforge.hooks.types import HookPatch, HookPhase, HookStep

if TYPE_CHECKING:
    from typeforge.metadata.loader import DatatypeDefinition

logger = logging.getLogger(__name__)


class HookStore:
    """Phase -> steps lists, keyed by lower-cased target type."""

    def __init__(self) -> None:
        self._flows: dict[str, dict[HookPhase, list[HookStep]]] = {}

    def apply_patch(self, patch: HookPatch) -> None:
        phases = self._flows.setdefault(normalize_key(patch.type_key), {})
        for phase, steps in patch.phases.items():
            phases.setdefault(HookPhase(phase), []).extend(steps)

    def get_flow(self, type_key: str, phase: HookPhase | str) -> list[HookStep]:
        """Steps for a type and phase, in execution order. Returns a copy."""
        phases = self._flows.get(normalize_key(type_key), {})
        return list(phases.get(HookPhase(phase), ()))

    def type_keys(self) -> list[str]:
        return list(self._flows.keys())

    def reset(self) -> None:
        self._flows.clear()


def load_hook_patches(store: HookStore, definitions: Iterable[DatatypeDefinition]) -> None:
    """Rebuild *store* from *definitions*, which must already be in load order."""
    definitions = list(definitions)
    known = {d.key_lower for d in definitions}

    store.reset()
    for definition in definitions:
        if definition.hooks:
            store.apply_patch(definition.own_patch())

    for definition in definitions:
        for patch in definition.contributed_patches():
            if patch.type_key not in known:
                logger.warning(
                    "Datatype %s contributes hooks to unknown datatype %s",
                    definition.key_lower,
                    patch.type_key,
                )
            store.apply_patch(patch)
