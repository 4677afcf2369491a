"""Load and resolve datatype definitions from YAML files."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from typeforge.core.types import (
    FIELD_TYPES,
    KEY_PATTERN,
    ON_DELETE_POLICIES,
    REF_CARDINALITIES,
    STORAGE_MODES,
    normalize_key,
)
from typeforge.hooks.types import HOOK_PHASES, HookPatch, HookPhase, HookStep

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldConstraints:
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    min: float | None = None
    max: float | None = None
    integer: bool = False
    enum_values: tuple[str, ...] = ()
    enum_case_insensitive: bool = False


@dataclass(frozen=True)
class FieldSpec:
    """A typed, constrained property of a datatype.

    ``ref_target``/``ref_cardinality``/``on_delete`` only apply to ``ref`` fields.
    """

    key: str
    type: str
    required: bool = False
    array: bool = False
    unique: bool = False
    constraints: FieldConstraints = field(default_factory=FieldConstraints)
    ref_target: str | None = None
    ref_cardinality: str | None = None
    on_delete: str | None = None

    @property
    def is_ref(self) -> bool:
        return self.type == "ref"


@dataclass(frozen=True)
class HookContribution:
    """Hooks a datatype contributes into another datatype's flows."""

    target: str
    phases: dict[HookPhase, tuple[HookStep, ...]]


@dataclass(frozen=True)
class DatatypeDefinition:
    key: str
    version: int = 1
    status: str = "draft"  # "draft" | "published"
    storage: str = "perType"  # "single" | "perType"
    fields: tuple[FieldSpec, ...] = ()
    hooks: dict[HookPhase, tuple[HookStep, ...]] = field(default_factory=dict)
    contributes: tuple[HookContribution, ...] = ()
    label: str = ""

    @property
    def key_lower(self) -> str:
        return normalize_key(self.key)

    @property
    def is_published(self) -> bool:
        return self.status == "published"

    def get_field(self, field_key: str) -> FieldSpec | None:
        for f in self.fields:
            if f.key == field_key:
                return f
        return None

    def own_patch(self) -> HookPatch:
        return HookPatch(type_key=self.key_lower, phases=self.hooks)

    def contributed_patches(self) -> list[HookPatch]:
        return [
            HookPatch(type_key=normalize_key(c.target), phases=c.phases)
            for c in self.contributes
        ]


def parse_field(data: dict[str, Any], ctx: str = "") -> FieldSpec:
    """Convert a field dict to FieldSpec, enforcing composition invariants."""
    if not isinstance(data, dict):
        raise ValueError(f"{ctx}: field must be a mapping")

    key = data.get("key")
    if not isinstance(key, str) or not KEY_PATTERN.fullmatch(key):
        raise ValueError(f"{ctx}: field key {key!r} is missing or malformed")
    where = f"{ctx}: field '{key}'"

    field_type = data.get("type", "string")
    if field_type not in FIELD_TYPES:
        raise ValueError(f"{where} has unknown type '{field_type}'")

    array = bool(data.get("array", False))
    unique = bool(data.get("unique", False))
    if unique and array:
        raise ValueError(f"{where} cannot be both unique and array")

    constraints_data = data.get("constraints") or {}
    if not isinstance(constraints_data, dict):
        raise ValueError(f"{where} constraints must be a mapping")
    constraints = FieldConstraints(
        min_length=constraints_data.get("minLength"),
        max_length=constraints_data.get("maxLength"),
        pattern=constraints_data.get("pattern"),
        min=constraints_data.get("min"),
        max=constraints_data.get("max"),
        integer=bool(constraints_data.get("integer", False)),
        enum_values=tuple(constraints_data.get("enumValues") or ()),
        enum_case_insensitive=bool(constraints_data.get("enumCaseInsensitive", False)),
    )
    if field_type == "enum" and not constraints.enum_values:
        raise ValueError(f"{where} is an enum without enumValues")

    ref_target = ref_cardinality = on_delete = None
    if field_type == "ref":
        ref_target = data.get("refTarget")
        if not isinstance(ref_target, str) or not KEY_PATTERN.fullmatch(ref_target):
            raise ValueError(f"{where} is a ref without a valid refTarget")
        ref_target = normalize_key(ref_target)
        ref_cardinality = data.get("refCardinality") or ("many" if array else "one")
        if ref_cardinality not in REF_CARDINALITIES:
            raise ValueError(f"{where} has unknown refCardinality '{ref_cardinality}'")
        if (ref_cardinality == "many") != array:
            raise ValueError(
                f"{where} refCardinality '{ref_cardinality}' disagrees with array={array}"
            )
        on_delete = data.get("onDelete", "restrict")
        if on_delete not in ON_DELETE_POLICIES:
            raise ValueError(f"{where} has unknown onDelete '{on_delete}'")

    return FieldSpec(
        key=key,
        type=field_type,
        required=bool(data.get("required", False)),
        array=array,
        unique=unique,
        constraints=constraints,
        ref_target=ref_target,
        ref_cardinality=ref_cardinality,
        on_delete=on_delete,
    )


def parse_hook_phases(data: Any, ctx: str = "") -> dict[HookPhase, tuple[HookStep, ...]]:
    """Convert a ``{phase: [step, ...]}`` mapping to typed phases."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{ctx}: hooks must be a mapping of phase to steps")

    phases: dict[HookPhase, tuple[HookStep, ...]] = {}
    for phase_name, steps in data.items():
        if phase_name not in HOOK_PHASES:
            raise ValueError(f"{ctx}: unknown hook phase '{phase_name}'")
        if not isinstance(steps, list):
            raise ValueError(f"{ctx}: {phase_name} must be a list of steps")
        parsed: list[HookStep] = []
        for i, step in enumerate(steps):
            if not isinstance(step, dict) or not isinstance(step.get("action"), str):
                raise ValueError(f"{ctx}: {phase_name}[{i}] must declare an action")
            args = step.get("args")
            if args is not None and not isinstance(args, dict):
                raise ValueError(f"{ctx}: {phase_name}[{i}] args must be a mapping")
            parsed.append(HookStep.from_dict(step))
        phases[HookPhase(phase_name)] = tuple(parsed)
    return phases


def parse_datatype(data: dict[str, Any], ctx: str = "") -> DatatypeDefinition:
    """Convert a datatype document (YAML/JSON dict) to a DatatypeDefinition."""
    if not isinstance(data, dict):
        raise ValueError(f"{ctx}: datatype document must be a mapping")

    key = data.get("datatype")
    if not isinstance(key, str) or not KEY_PATTERN.fullmatch(key):
        raise ValueError(f"{ctx}: 'datatype' key {key!r} is missing or malformed")
    where = f"{ctx}: datatype '{key}'"

    version = data.get("version", 1)
    if not isinstance(version, int) or isinstance(version, bool) or version <= 0:
        raise ValueError(f"{where} must declare a positive integer version")

    status = data.get("status", "draft")
    if status not in ("draft", "published"):
        raise ValueError(f"{where} must declare status draft or published")

    storage = data.get("storage", "perType")
    if storage not in STORAGE_MODES:
        raise ValueError(f"{where} has invalid storage mode '{storage}'")

    fields_data = data.get("fields") or []
    if not isinstance(fields_data, list):
        raise ValueError(f"{where} fields must be a list")
    fields = tuple(parse_field(f, where) for f in fields_data)
    seen: set[str] = set()
    for f in fields:
        if f.key in seen:
            raise ValueError(f"{where} declares field '{f.key}' twice")
        seen.add(f.key)

    contributes: list[HookContribution] = []
    for i, entry in enumerate(data.get("contributes") or []):
        if not isinstance(entry, dict):
            raise ValueError(f"{where} contributes[{i}] must be a mapping")
        target = entry.get("target")
        if not isinstance(target, str) or not KEY_PATTERN.fullmatch(target):
            raise ValueError(f"{where} contributes[{i}]: target is missing or malformed")
        contributes.append(
            HookContribution(
                target=normalize_key(target),
                phases=parse_hook_phases(entry.get("hooks"), f"{where} contributes[{i}]"),
            )
        )

    return DatatypeDefinition(
        key=key,
        version=version,
        status=status,
        storage=storage,
        fields=fields,
        hooks=parse_hook_phases(data.get("hooks"), where),
        contributes=tuple(contributes),
        label=data.get("label", key),
    )


class DatatypeLoader:
    """Loads datatype definitions from a directory of YAML files.

    Files are read in lexical filename order; that order is the load order
    used for hook contribution sequencing.
    """

    def __init__(self, datatypes_path: Path):
        self.datatypes_path = datatypes_path
        self.datatypes: dict[str, DatatypeDefinition] = {}

    def load_all(self) -> list[DatatypeDefinition]:
        """Load every datatype file, returning definitions in load order."""
        self.datatypes.clear()
        if not self.datatypes_path.exists():
            logger.warning("Datatypes directory not found: %s", self.datatypes_path)
            return []

        seen_in: dict[str, str] = {}
        files = sorted(
            p
            for p in self.datatypes_path.iterdir()
            if p.is_file()
            and not p.name.startswith(".")
            and p.suffix.lower() in (".yaml", ".yml")
        )
        for yaml_file in files:
            with open(yaml_file) as f:
                try:
                    data = yaml.safe_load(f)
                except yaml.YAMLError as e:
                    raise ValueError(f"{yaml_file.name}: failed to parse YAML: {e}") from e
            if not data:
                continue
            definition = parse_datatype(data, yaml_file.name)
            existing = seen_in.get(definition.key_lower)
            if existing:
                raise ValueError(
                    f"Duplicate datatype key '{definition.key_lower}' found in files "
                    f"{existing} and {yaml_file.name}"
                )
            seen_in[definition.key_lower] = yaml_file.name
            self.datatypes[definition.key_lower] = definition

        return list(self.datatypes.values())

    def get_datatype(self, key: str) -> DatatypeDefinition | None:
        return self.datatypes.get(normalize_key(key))

    def list_datatypes(self) -> list[str]:
        return list(self.datatypes.keys())
