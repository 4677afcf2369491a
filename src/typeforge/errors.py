"""Domain errors raised by the entity lifecycle engine.

Every error carries a machine-readable ``code`` matching its kind and a
``to_dict()`` for serialization. None of these are retried internally.
"""

from typing import Any


class EntityError(Exception):
    """Base class for all entity lifecycle domain errors."""

    code = "EntityError"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class UnknownTypeError(EntityError):
    code = "UnknownType"

    def __init__(self, type_key: str):
        self.type_key = type_key
        super().__init__(f"Unknown datatype: {type_key}", {"typeKey": type_key})


class UnpublishedTypeError(EntityError):
    code = "UnpublishedType"

    def __init__(self, type_key: str):
        self.type_key = type_key
        super().__init__(
            f"Datatype exists but is not published: {type_key}",
            {"typeKey": type_key},
        )


class ValidationFailedError(EntityError):
    """Payload validation failed; ``errors`` maps field key to failure code."""

    code = "ValidationFailed"

    def __init__(self, type_key: str, errors: dict[str, str]):
        self.type_key = type_key
        self.errors = dict(errors)
        super().__init__(
            f"Validation failed for datatype: {type_key}",
            {"typeKey": type_key, "errors": self.errors},
        )


class UniqueViolationError(EntityError):
    code = "UniqueViolation"

    def __init__(self, type_key: str, field_key: str, value: Any = None):
        self.type_key = type_key
        self.field_key = field_key
        self.value = value
        super().__init__(
            f"Unique constraint violated on '{field_key}' for datatype: {type_key}",
            {"typeKey": type_key, "field": field_key, "value": value},
        )


class RefMissingError(EntityError):
    code = "RefMissing"

    def __init__(self, type_key: str, field_key: str, target: str, missing: list[str]):
        self.type_key = type_key
        self.field_key = field_key
        self.target = target
        self.missing = list(missing)
        super().__init__(
            f"Field '{field_key}' of {type_key} references missing {target} id(s): "
            f"{', '.join(self.missing)}",
            {
                "typeKey": type_key,
                "field": field_key,
                "target": target,
                "missing": self.missing,
            },
        )


class RefRestrictError(EntityError):
    """Delete blocked because referencing entities exist on a restrict edge."""

    code = "RefRestrict"

    def __init__(self, type_key: str, entity_id: str, referrers: list[dict[str, Any]]):
        self.type_key = type_key
        self.entity_id = entity_id
        self.referrers = list(referrers)
        summary = ", ".join(
            f"{r['count']} {r['from']}.{r['field']}" for r in self.referrers
        )
        super().__init__(
            f"Cannot delete {type_key} {entity_id}: referenced by {summary}",
            {"typeKey": type_key, "id": entity_id, "referrers": self.referrers},
        )


class EntityNotFoundError(EntityError):
    code = "EntityNotFound"

    def __init__(self, type_key: str, entity_id: str):
        self.type_key = type_key
        self.entity_id = entity_id
        super().__init__(
            f"Entity not found for datatype {type_key} with id {entity_id}",
            {"typeKey": type_key, "id": entity_id},
        )


class CollectionResolutionError(EntityError):
    code = "CollectionResolutionFailed"

    def __init__(self, type_key: str, reason: str):
        self.type_key = type_key
        self.reason = reason
        super().__init__(
            f"Failed to resolve collection for datatype {type_key}: {reason}",
            {"typeKey": type_key, "reason": reason},
        )


class UnknownHookActionError(EntityError):
    code = "UnknownHookAction"

    def __init__(self, action: str, phase: str, type_key: str):
        self.action = action
        self.phase = phase
        self.type_key = type_key
        super().__init__(
            f"Unknown action: {action} (phase={phase}, typeKey={type_key})",
            {"action": action, "phase": phase, "typeKey": type_key},
        )


class HookStepFailedError(EntityError):
    """A hook step raised; the original exception is chained as ``cause``."""

    code = "HookStepFailed"

    def __init__(self, phase: str, type_key: str, action: str, cause: BaseException):
        self.phase = phase
        self.type_key = type_key
        self.action = action
        self.cause = cause
        super().__init__(
            f"{cause} [{phase}/{type_key}/{action}]",
            {
                "phase": phase,
                "typeKey": type_key,
                "action": action,
                "cause": cause.to_dict() if isinstance(cause, EntityError) else str(cause),
            },
        )


class InvalidHookArgsError(EntityError):
    code = "InvalidHookArgs"

    def __init__(self, action: str, issues: list[dict[str, str]]):
        self.action = action
        self.issues = list(issues)
        super().__init__(
            f"Invalid arguments for hook action '{action}'",
            {"action": action, "issues": self.issues},
        )
