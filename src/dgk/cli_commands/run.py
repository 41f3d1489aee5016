"""``dgk run`` — gate a change and, if allowed, apply it."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from dgk.cli_commands._output import (
    EXIT_CONFIG,
    EXIT_FAILED,
    console,
    exit_code_for,
    print_outcome,
    setup_logging,
)
from dgk.core.errors import ConfigError, CredentialIntegrityError

if TYPE_CHECKING:
    from dgk.core.models import ChangeDescriptor, Outcome
    from dgk.sdk.runner import PipelineBuilder


def load_builder(config: str, *, telemetry: bool = False) -> PipelineBuilder:
    """Load CONFIG or exit with the configuration error code."""
    from dgk.sdk.models import TelemetrySettings
    from dgk.sdk.runner import PipelineBuilder

    try:
        builder = PipelineBuilder.from_yaml(config)
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        sys.exit(EXIT_CONFIG)

    if telemetry:
        if builder.spec.telemetry is None:
            builder.spec.telemetry = TelemetrySettings(enabled=True, console=True)
        else:
            builder.spec.telemetry.enabled = True
    builder.configure_telemetry()
    return builder


def describe_change(source: str, environment: str, revision: str | None) -> ChangeDescriptor:
    """Fingerprint SOURCE for ENVIRONMENT or exit with the configuration error code."""
    from dgk.core.models import ChangeDescriptor

    try:
        return ChangeDescriptor.from_directory(Path(source).resolve(), environment, revision=revision)
    except ValueError as exc:
        console.print(f"[red]Invalid change:[/red] {exc}")
        sys.exit(EXIT_CONFIG)


async def _run(builder: PipelineBuilder, change: ChangeDescriptor) -> Outcome:
    try:
        return await builder.build(change).run()
    finally:
        await builder.aclose()


@click.command()
@click.argument("config", type=click.Path(exists=True, dir_okay=False))
@click.argument("source", type=click.Path(exists=True, file_okay=False))
@click.option("--environment", "-e", required=True, help="Target environment.")
@click.option("--revision", "-r", default=None, help="VCS revision of SOURCE, recorded on the outcome.")
@click.option("--json", "as_json", is_flag=True, help="Print the outcome as JSON.")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--telemetry", is_flag=True, help="Enable telemetry.")
def run(
    config: str,
    source: str,
    environment: str,
    revision: str | None,
    as_json: bool,
    verbose: bool,
    telemetry: bool,
) -> None:
    """Gate SOURCE against CONFIG and apply it to ENVIRONMENT if allowed.

    Exit codes: 0 applied, 1 failed, 2 blocked, 3 lock contention,
    4 configuration error.
    """
    setup_logging(verbose)
    builder = load_builder(config, telemetry=telemetry)
    change = describe_change(source, environment, revision)

    if verbose:
        console.print(f"Running pipeline {builder.spec.name or config} for {change.short}")

    try:
        outcome = asyncio.run(_run(builder, change))
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        sys.exit(EXIT_CONFIG)
    except CredentialIntegrityError as exc:
        console.print(f"[red]Credential integrity violation:[/red] {exc}")
        sys.exit(EXIT_FAILED)

    print_outcome(outcome, as_json=as_json)
    sys.exit(exit_code_for(outcome))
