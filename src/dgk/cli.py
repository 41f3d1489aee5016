"""dgk CLI entrypoint."""

from __future__ import annotations

import click

from dgk import __version__


@click.group()
@click.version_option(version=__version__, prog_name="dgk")
def main() -> None:
    """dgk — gate, then apply, infrastructure changes."""


# Register subcommands
from dgk.cli_commands import register_commands  # noqa: E402

register_commands(main)

if __name__ == "__main__":
    main()
