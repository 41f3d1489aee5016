"""``dgk check`` — run the gates and report the decision, never apply."""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING

import click

from dgk.cli_commands._output import (
    EXIT_BLOCKED,
    EXIT_CONFIG,
    EXIT_OK,
    console,
    print_decision,
    setup_logging,
)
from dgk.cli_commands.run import describe_change, load_builder
from dgk.core.errors import ConfigError

if TYPE_CHECKING:
    from dgk.core.models import ChangeDescriptor, Decision
    from dgk.sdk.runner import PipelineBuilder


async def _check(builder: PipelineBuilder, change: ChangeDescriptor) -> Decision:
    try:
        return await builder.check(change)
    finally:
        await builder.aclose()


@click.command()
@click.argument("config", type=click.Path(exists=True, dir_okay=False))
@click.argument("source", type=click.Path(exists=True, file_okay=False))
@click.option("--environment", "-e", required=True, help="Target environment.")
@click.option("--json", "as_json", is_flag=True, help="Print the decision as JSON.")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
def check(config: str, source: str, environment: str, as_json: bool, verbose: bool) -> None:
    """Gate SOURCE against CONFIG for ENVIRONMENT without credentials or apply.

    Exits 0 when the change would be allowed and 2 when it is blocked.
    """
    setup_logging(verbose)
    builder = load_builder(config)
    change = describe_change(source, environment, None)

    try:
        decision = asyncio.run(_check(builder, change))
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        sys.exit(EXIT_CONFIG)

    if as_json:
        console.print_json(decision.model_dump_json())
    else:
        print_decision(decision)
    sys.exit(EXIT_OK if decision.allowed else EXIT_BLOCKED)
