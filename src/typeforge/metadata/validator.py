"""
metadata/validator.py: JSON Schema validation for datatype YAML files.

Structural checks run before the loader's semantic checks so that authors get
every shape problem in a file at once, with a path into the document.

Usage:
    from typeforge.metadata.validator import validate_datatypes_dir

    for issue in validate_datatypes_dir(Path("datatypes")):
        print(issue)
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError

logger = logging.getLogger(__name__)

_SCHEMAS_DIR = Path(__file__).parent / "schemas"
_DATATYPE_SCHEMA = "datatype.schema.json"


@dataclass
class ValidationIssue:
    """A single validation finding for a datatype YAML file."""

    file: Path
    message: str
    path: str = ""          # location within the document, e.g. "fields[0]/type"
    severity: str = "error"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        return f"[{self.severity.upper()}] {self.file}{loc}: {self.message}"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


@lru_cache(maxsize=None)
def _load_schema(name: str) -> dict[str, Any]:
    with (_SCHEMAS_DIR / name).open() as fh:
        return json.load(fh)


def _validator() -> Draft202012Validator:
    return Draft202012Validator(_load_schema(_DATATYPE_SCHEMA))


def _json_path(error: ValidationError) -> str:
    parts = []
    for p in error.absolute_path:
        parts.append(f"[{p}]" if isinstance(p, int) else str(p))
    return "/".join(parts).replace("/[", "[")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_document(doc: Any, file: Path) -> list[ValidationIssue]:
    """Validate an already-parsed datatype document."""
    validator = _validator()
    return [
        ValidationIssue(file=file, message=error.message, path=_json_path(error))
        for error in sorted(validator.iter_errors(doc), key=lambda e: [str(p) for p in e.path])
    ]


def validate_yaml_file(yaml_path: Path) -> list[ValidationIssue]:
    """Validate a single datatype YAML file. Empty list means valid."""
    try:
        with yaml_path.open() as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        return [ValidationIssue(file=yaml_path, message=f"YAML parse error: {exc}")]

    if raw is None:
        return [
            ValidationIssue(
                file=yaml_path,
                message="File is empty or contains only whitespace",
                severity="warning",
            )
        ]
    return validate_document(raw, yaml_path)


def validate_datatypes_dir(datatypes_dir: Path) -> list[ValidationIssue]:
    """Validate every ``.yaml``/``.yml`` file in *datatypes_dir* (lexical order)."""
    if not datatypes_dir.is_dir():
        return [
            ValidationIssue(
                file=datatypes_dir,
                message=f"Datatypes directory does not exist: {datatypes_dir}",
            )
        ]

    issues: list[ValidationIssue] = []
    files = sorted(
        p
        for p in datatypes_dir.iterdir()
        if p.is_file() and not p.name.startswith(".") and p.suffix.lower() in (".yaml", ".yml")
    )
    for yaml_file in files:
        issues.extend(validate_yaml_file(yaml_file))
    logger.debug("Validated %d datatype files in %s", len(files), datatypes_dir)
    return issues
