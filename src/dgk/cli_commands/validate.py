"""``dgk validate`` — load and validate a pipeline configuration."""

from __future__ import annotations

import click

from dgk.cli_commands._output import console, setup_logging
from dgk.cli_commands.run import load_builder


@click.command()
@click.argument("config", type=click.Path(exists=True, dir_okay=False))
def validate(config: str) -> None:
    """Validate CONFIG: schema, gate graph and accepted risks."""
    setup_logging(False)
    builder = load_builder(config)
    spec = builder.spec

    console.print("[green]Pipeline validated successfully.[/green]")
    console.print(f"  Name: {spec.name or '(unnamed)'}")
    console.print(f"  Threshold: {spec.severity_threshold.value}")
    console.print(f"  Gates: {', '.join(builder.graph.order)}")
    console.print(f"  Environments: {', '.join(sorted(spec.environments))}")
    console.print(f"  Accepted risks: {len(builder.exceptions)}")
