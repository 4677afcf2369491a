"""typeforge CLI entry point."""

import click


@click.group()
def cli():
    """typeforge: runtime-defined datatypes CLI."""
    pass


# Register subcommand groups
from typeforge.cli.datatypes_cmd import datatypes  # noqa: E402

cli.add_command(datatypes)
