"""Datatype CLI commands: validate and graph."""

import os
from pathlib import Path

import click

from typeforge.integrity.graph import build_edges
from typeforge.metadata.loader import DatatypeLoader
from typeforge.metadata.validator import validate_datatypes_dir


def _default_dir() -> Path:
    return Path(os.environ.get("TYPEFORGE_DATATYPES_DIR") or "datatypes")


dir_option = click.option(
    "--dir",
    "datatypes_dir",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Datatypes directory (default: $TYPEFORGE_DATATYPES_DIR or ./datatypes).",
)


def _load(datatypes_dir: Path):
    loader = DatatypeLoader(datatypes_dir)
    try:
        return loader.load_all()
    except ValueError as e:
        click.echo(click.style(f"Semantic validation failed: {e}", fg="red"), err=True)
        raise SystemExit(1)


@click.group()
def datatypes():
    """Datatype definition commands."""
    pass


@datatypes.command()
@dir_option
def validate(datatypes_dir: Path | None):
    """Validate datatype YAML files (JSON Schema, then semantic load)."""
    datatypes_dir = datatypes_dir or _default_dir()
    if not datatypes_dir.is_dir():
        click.echo(f"Error: Datatypes directory not found at {datatypes_dir}", err=True)
        raise SystemExit(1)

    # ── Schema (JSON Schema) validation ─────────────────────────────────────
    issues = validate_datatypes_dir(datatypes_dir)
    errors = [i for i in issues if i.severity == "error"]
    warnings = [i for i in issues if i.severity == "warning"]

    for issue in issues:
        colour = "red" if issue.severity == "error" else "yellow"
        click.echo(click.style(str(issue), fg=colour))

    if errors:
        click.echo(
            click.style(
                f"\n{len(errors)} schema error(s) found"
                + (f", {len(warnings)} warning(s)" if warnings else ""),
                fg="red",
                bold=True,
            )
        )
        raise SystemExit(1)

    # ── Semantic (loader) validation ─────────────────────────────────────────
    definitions = _load(datatypes_dir)
    click.echo(f"\nLoaded {len(definitions)} datatypes:")
    for definition in definitions:
        click.echo(
            f"  ✓ {definition.key_lower} v{definition.version} "
            f"({len(definition.fields)} fields, {definition.status}, {definition.storage})"
        )

    click.echo(click.style("\nAll datatypes are valid.", fg="green", bold=True))


@datatypes.command()
@dir_option
def graph(datatypes_dir: Path | None):
    """Print the reference graph derived from datatype ref fields."""
    datatypes_dir = datatypes_dir or _default_dir()
    definitions = _load(datatypes_dir)
    known = {d.key_lower for d in definitions}

    edges = build_edges(definitions)
    if not edges:
        click.echo("No reference edges.")
        return

    for edge in edges:
        arrow = "->>" if edge.many else "->"
        line = f"{edge.from_type}.{edge.field_key} {arrow} {edge.to_type} (onDelete: {edge.on_delete})"
        if edge.to_type not in known:
            line += click.style("  [unknown target]", fg="yellow")
        click.echo(line)
    click.echo(f"\n{len(edges)} edge(s)")
