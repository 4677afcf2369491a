"""Schema compiler: turns a datatype's field list into a validator/coercer.

Each field compiles to a check function returning ``(coerced, code)``, where
``code`` is None on success. Checks never short-circuit across fields; every
failing field shows up in the outcome's error map.

Failure codes:
- required, unique_array, expected_array, invalid_element:<code>
- expected_string, minLength, maxLength, pattern
- expected_number, integer, min, max
- expected_boolean, expected_date, enum, expected_id
"""

import logging
import math
import re
from collections.abc import Callable, Sequence
from datetime import date, datetime, timezone
from typing import Any

from typeforge.core.types import as_entity_id
from typeforge.metadata.loader import DatatypeDefinition, FieldSpec
from typeforge.validation.types import Mode, ValidationOutcome

logger = logging.getLogger(__name__)

Check = Callable[[Any], tuple[Any, str | None]]


# =============================================================================
# Scalar checks
# =============================================================================


def _string_check(spec: FieldSpec) -> Check:
    c = spec.constraints
    pattern = None
    if c.pattern:
        try:
            pattern = re.compile(c.pattern)
        except re.error as e:
            logger.warning(
                "Ignoring invalid pattern %r on field '%s': %s", c.pattern, spec.key, e
            )

    def check(value: Any) -> tuple[Any, str | None]:
        if not isinstance(value, str):
            return None, "expected_string"
        if c.min_length is not None and len(value) < c.min_length:
            return None, "minLength"
        if c.max_length is not None and len(value) > c.max_length:
            return None, "maxLength"
        if pattern is not None and not pattern.search(value):
            return None, "pattern"
        return value, None

    return check


def _parse_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            parsed = float(text)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _number_check(spec: FieldSpec) -> Check:
    c = spec.constraints

    def check(value: Any) -> tuple[Any, str | None]:
        number = _parse_number(value)
        if number is None:
            return None, "expected_number"
        if c.integer:
            if isinstance(number, float):
                if not number.is_integer():
                    return None, "integer"
                number = int(number)
        if c.min is not None and number < c.min:
            return None, "min"
        if c.max is not None and number > c.max:
            return None, "max"
        return number, None

    return check


def _boolean_check(spec: FieldSpec) -> Check:
    def check(value: Any) -> tuple[Any, str | None]:
        if isinstance(value, bool):
            return value, None
        if value == "true":
            return True, None
        if value == "false":
            return False, None
        return None, "expected_boolean"

    return check


def _parse_date(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _date_check(spec: FieldSpec) -> Check:
    def check(value: Any) -> tuple[Any, str | None]:
        parsed = _parse_date(value)
        if parsed is None:
            return None, "expected_date"
        return parsed.isoformat(), None

    return check


def _enum_check(spec: FieldSpec) -> Check:
    c = spec.constraints
    folded = {v.casefold(): v for v in c.enum_values}

    def check(value: Any) -> tuple[Any, str | None]:
        if not isinstance(value, str):
            return None, "expected_string"
        if value in c.enum_values:
            return value, None
        if c.enum_case_insensitive and value.casefold() in folded:
            return folded[value.casefold()], None
        return None, "enum"

    return check


def _ref_check(spec: FieldSpec) -> Check:
    def check(value: Any) -> tuple[Any, str | None]:
        entity_id = as_entity_id(value)
        if entity_id is None:
            return None, "expected_id"
        return entity_id, None

    return check


_SCALAR_CHECKS: dict[str, Callable[[FieldSpec], Check]] = {
    "string": _string_check,
    "number": _number_check,
    "boolean": _boolean_check,
    "date": _date_check,
    "enum": _enum_check,
    "ref": _ref_check,
}


def _array_check(scalar: Check) -> Check:
    def check(value: Any) -> tuple[Any, str | None]:
        if not isinstance(value, (list, tuple)):
            return None, "expected_array"
        out = []
        for element in value:
            coerced, code = scalar(element)
            if code is not None:
                return None, f"invalid_element:{code}"
            out.append(coerced)
        return out, None

    return check


# =============================================================================
# Compiled schema
# =============================================================================


class CompiledSchema:
    """Validator/coercer for one field list in one mode."""

    def __init__(self, fields: Sequence[FieldSpec], mode: Mode):
        self.mode = Mode(mode)
        self.fields = tuple(fields)
        self._checks: dict[str, Check] = {}
        self._scalars: dict[str, Check] = {}
        for spec in self.fields:
            scalar = _SCALAR_CHECKS[spec.type](spec)
            self._scalars[spec.key] = scalar
            self._checks[spec.key] = _array_check(scalar) if spec.array else scalar
        self.required = frozenset(
            f.key for f in self.fields if self.mode == Mode.CREATE and f.required and not f.array
        )

    def validate(self, payload: Any, allow_unknown: bool = False) -> ValidationOutcome:
        """Validate and coerce *payload*.

        Unknown keys are dropped unless ``allow_unknown`` is set, in which case
        they pass through untouched. ``None`` values count as absent.
        """
        if not isinstance(payload, dict):
            return ValidationOutcome(ok=False, errors={"payload": "expected_object"})

        errors: dict[str, str] = {}
        value: dict[str, Any] = {}

        for spec in self.fields:
            if spec.unique and spec.array:
                errors[spec.key] = "unique_array"
                continue
            raw = payload.get(spec.key)
            if raw is None:
                if spec.key in self.required:
                    errors[spec.key] = "required"
                continue
            coerced, code = self._checks[spec.key](raw)
            if code is not None:
                errors[spec.key] = code
            else:
                value[spec.key] = coerced

        if allow_unknown:
            for key, raw in payload.items():
                if key not in self._checks:
                    value[key] = raw

        if errors:
            return ValidationOutcome(ok=False, errors=errors)
        return ValidationOutcome(ok=True, value=value)

    def coerce_scalar(self, field_key: str, value: Any) -> Any:
        """Coerce one element value for *field_key* (used for query filters).

        Values that fail the field's check are returned unchanged.
        """
        check = self._scalars.get(field_key)
        if check is None:
            return value
        coerced, code = check(value)
        return value if code is not None else coerced


def compile_fields(fields: Sequence[FieldSpec], mode: Mode | str) -> CompiledSchema:
    return CompiledSchema(fields, Mode(mode))


def validate_and_coerce(
    fields: Sequence[FieldSpec], mode: Mode | str, payload: Any
) -> ValidationOutcome:
    """One-shot compile + validate, for callers without a cache."""
    return compile_fields(fields, mode).validate(payload)


class SchemaCache:
    """Compiled schemas keyed by ``(type_key, version, mode)``.

    Entries are never mutated; a version bump simply produces a new key.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, int, Mode], CompiledSchema] = {}

    def get(self, definition: DatatypeDefinition, mode: Mode | str) -> CompiledSchema:
        key = (definition.key_lower, definition.version, Mode(mode))
        compiled = self._entries.get(key)
        if compiled is None:
            logger.debug("Compiling schema for %s v%d (%s)", key[0], key[1], key[2].value)
            compiled = CompiledSchema(definition.fields, key[2])
            self._entries[key] = compiled
        return compiled

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
