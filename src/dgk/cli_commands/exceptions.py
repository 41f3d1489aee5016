"""``dgk exceptions`` — inspect accepted risks."""

from __future__ import annotations

import fnmatch
import sys
from datetime import UTC, datetime
from pathlib import Path

import click

from dgk.cli_commands._output import EXIT_CONFIG, console, print_risks_table
from dgk.core.errors import ConfigError


@click.group()
def exceptions() -> None:
    """Inspect accepted risks (finding exceptions)."""


@exceptions.command("list")
@click.argument("config", type=click.Path(exists=True, dir_okay=False))
@click.option("--environment", "-e", default=None, help="Only risks whose scope covers this environment.")
@click.option("--active", is_flag=True, help="Hide expired risks.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def list_cmd(config: str, environment: str | None, active: bool, as_json: bool) -> None:
    """List the accepted risks configured for CONFIG."""
    from dgk.sdk.runner import PipelineLoader, collect_accepted_risks

    path = Path(config)
    try:
        spec = PipelineLoader(path).load()
        risks = collect_accepted_risks(spec, path.parent)
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        sys.exit(EXIT_CONFIG)

    now = datetime.now(UTC)
    if environment is not None:
        risks = [r for r in risks if any(fnmatch.fnmatchcase(environment, p) for p in r.scope.environments)]
    if active:
        risks = [r for r in risks if not r.is_expired(now)]

    if as_json:
        console.print_json(data=[r.model_dump(mode="json") for r in risks])
        return
    if not risks:
        console.print("No accepted risks.")
        return
    print_risks_table(risks, now=now)
