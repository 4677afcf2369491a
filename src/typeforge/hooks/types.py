"""Hook system types for typeforge.

Defines the core data structures for the phase-based hook pipeline:
- HookPhase: the ten lifecycle points (before/after x create/get/update/delete/list)
- HookStep: one action invocation with optional arguments
- HookPatch: a set of phase -> steps contributed to one target type
- HookContext / HookMeta: the working state threaded through steps
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class HookPhase(str, Enum):
    """A named point in an entity operation's lifecycle."""

    BEFORE_CREATE = "beforeCreate"
    AFTER_CREATE = "afterCreate"
    BEFORE_GET = "beforeGet"
    AFTER_GET = "afterGet"
    BEFORE_UPDATE = "beforeUpdate"
    AFTER_UPDATE = "afterUpdate"
    BEFORE_DELETE = "beforeDelete"
    AFTER_DELETE = "afterDelete"
    BEFORE_LIST = "beforeList"
    AFTER_LIST = "afterList"


HOOK_PHASES: tuple[str, ...] = tuple(p.value for p in HookPhase)


@dataclass(frozen=True)
class HookStep:
    """One step in a phase flow.

    Attributes:
        action: Registered action id (e.g., "validate", "enrich")
        args: Per-step arguments; deep-copied before each invocation
    """

    action: str
    args: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HookStep":
        """Create HookStep from YAML/JSON dict."""
        return cls(action=data["action"], args=data.get("args"))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"action": self.action}
        if self.args is not None:
            result["args"] = self.args
        return result


@dataclass(frozen=True)
class HookPatch:
    """Steps contributed to a target type, keyed by phase."""

    type_key: str
    phases: dict[HookPhase, tuple[HookStep, ...]] = field(default_factory=dict)


@dataclass
class HookMeta:
    """Execution metadata visible to actions.

    Attributes:
        type_key: Datatype the operation targets
        phase: Phase currently executing (set by the engine)
        step_args: Deep copy of the current step's args (set by the engine)
        request_id: Optional caller correlation id
        extra: Free-form extension data (tracing, user info, ...)
    """

    type_key: str
    phase: HookPhase | None = None
    step_args: dict[str, Any] | None = None
    request_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class HookContext:
    """Working context passed from step to step.

    ``result`` is only populated for after-phases.
    """

    payload: Any
    meta: HookMeta
    result: Any = None


# Action signature: (HookContext) -> HookContext, sync or async.
# Returning None leaves the working context unchanged.
HookActionFn = Callable[
    [HookContext], HookContext | None | Awaitable[HookContext | None]
]
