"""Entity payload validation and coercion."""

from typeforge.validation.compiler import (
    CompiledSchema,
    SchemaCache,
    compile_fields,
    validate_and_coerce,
)
from typeforge.validation.types import Mode, ValidationOutcome

__all__ = [
    "CompiledSchema",
    "Mode",
    "SchemaCache",
    "ValidationOutcome",
    "compile_fields",
    "validate_and_coerce",
]
