"""Hook action registry for typeforge.

Maps an action id (the ``action`` of a hook step) to its implementation.
Actions must be registered before a flow referencing them runs.
"""

from collections.abc import Callable

from typeforge.hooks.types import HookActionFn


class HookRegistry:
    """Registry of hook actions.

    Unlike step lists, actions are not per-type: one registry serves every
    datatype. Registering an id twice is an error.

    Example:
        registry = HookRegistry()

        @registry.action("stampSlug")
        def stamp_slug(ctx: HookContext) -> HookContext:
            ...
    """

    def __init__(self) -> None:
        self._actions: dict[str, HookActionFn] = {}

    def register(self, name: str, action_fn: HookActionFn) -> None:
        """Register an action under *name*.

        Raises:
            ValueError: If *name* is already registered
        """
        if name in self._actions:
            raise ValueError(f"Hook action '{name}' is already registered")
        self._actions[name] = action_fn

    def get(self, name: str) -> HookActionFn | None:
        return self._actions.get(name)

    def is_registered(self, name: str) -> bool:
        return name in self._actions

    def list_registered(self) -> list[str]:
        return sorted(self._actions.keys())

    def clear(self) -> None:
        """Clear all registrations. Primarily for testing."""
        self._actions.clear()

    def action(self, name: str) -> Callable[[HookActionFn], HookActionFn]:
        """Decorator form of :meth:`register`."""

        def decorator(fn: HookActionFn) -> HookActionFn:
            self.register(name, fn)
            return fn

        return decorator
