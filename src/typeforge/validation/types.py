"""Core types for entity payload validation."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Mode(str, Enum):
    """Payload shape being validated.

    CREATE: required non-array fields must be present
    UPDATE: partial patch, nothing is required
    """

    CREATE = "create"
    UPDATE = "update"


@dataclass
class ValidationOutcome:
    """Result of validating and coercing a payload.

    Attributes:
        ok: True if every present field passed
        value: Coerced payload (declared keys only) when ok
        errors: Field key -> failure code, every failing field included
    """

    ok: bool
    value: dict[str, Any] | None = None
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"ok": True, "value": self.value}
        return {"ok": False, "errors": dict(self.errors)}
