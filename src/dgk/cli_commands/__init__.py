"""CLI subcommand registration."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register all subcommands on the CLI group."""
    from dgk.cli_commands.check import check
    from dgk.cli_commands.exceptions import exceptions
    from dgk.cli_commands.run import run
    from dgk.cli_commands.validate import validate

    cli.add_command(run)
    cli.add_command(check)
    cli.add_command(validate)
    cli.add_command(exceptions)
