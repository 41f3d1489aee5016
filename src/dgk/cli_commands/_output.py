"""Shared CLI output formatters, logging setup and exit codes."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from dgk.core.errors import ErrorKind
from dgk.core.models import GateOutcome, PipelineState

if TYPE_CHECKING:
    from collections.abc import Sequence

    from dgk.core.models import Decision, Outcome
    from dgk.policy.models import AcceptedRisk

console = Console()
err_console = Console(stderr=True)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BLOCKED = 2
EXIT_LOCK_CONTENTION = 3
EXIT_CONFIG = 4

_OUTCOME_STYLE = {
    GateOutcome.PASS: "green",
    GateOutcome.FAIL: "red",
    GateOutcome.ERROR: "yellow",
}


def setup_logging(verbose: bool) -> None:
    """Route ``dgk`` log records through rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def exit_code_for(outcome: Outcome) -> int:
    if outcome.state == PipelineState.SUCCEEDED:
        return EXIT_OK
    if outcome.state == PipelineState.BLOCKED:
        return EXIT_BLOCKED
    if outcome.error is not None and outcome.error.kind == ErrorKind.LOCK_CONTENTION:
        return EXIT_LOCK_CONTENTION
    return EXIT_FAILED


def print_decision(decision: Decision) -> None:
    """Pretty-print the gate verdicts and the findings that matter."""
    table = Table(title=f"Gates for {decision.report.change.short}")
    table.add_column("Gate", style="cyan")
    table.add_column("Outcome")
    table.add_column("Findings", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Advisory")

    for verdict in decision.report.verdicts:
        style = _OUTCOME_STYLE[verdict.outcome]
        table.add_row(
            verdict.gate,
            f"[{style}]{verdict.outcome.value}[/{style}]",
            str(len(verdict.findings)),
            f"{verdict.duration:.1f}s",
            "yes" if verdict.advisory else "",
        )
    console.print(table)

    relevant = [a for a in decision.findings if a.blocking or a.suppressed_by]
    errored = [v for v in decision.report.verdicts if v.outcome == GateOutcome.ERROR]
    if relevant or errored:
        findings = Table(title=f"Findings at or above {decision.threshold.value}")
        findings.add_column("Gate", style="cyan")
        findings.add_column("Severity")
        findings.add_column("Code")
        findings.add_column("Location")
        findings.add_column("Status")
        for assessed in relevant:
            status = f"accepted ({assessed.suppressed_by})" if assessed.suppressed_by else "[red]blocking[/red]"
            findings.add_row(
                assessed.gate,
                assessed.finding.severity.value,
                assessed.finding.code,
                assessed.finding.location or "-",
                status,
            )
        for verdict in errored:
            for finding in verdict.findings:
                findings.add_row(verdict.gate, "-", finding.code, "-", f"[yellow]{_truncate(finding.message)}[/yellow]")
        console.print(findings)

    if decision.allowed:
        console.print("[green]Decision: ALLOW[/green]")
    else:
        console.print("[red]Decision: BLOCK[/red]")


def print_outcome(outcome: Outcome, *, as_json: bool = False) -> None:
    """Pretty-print a pipeline outcome."""
    if as_json:
        console.print_json(outcome.model_dump_json())
        return

    if outcome.decision is not None:
        print_decision(outcome.decision)

    style = "green" if outcome.state == PipelineState.SUCCEEDED else "red"
    console.print(f"\n[bold]Run {outcome.run_id}[/bold]: [{style}]{outcome.state.value}[/{style}]")
    console.print(f"  Change: {outcome.change.short}")
    console.print(f"  Apply: {outcome.apply_status.value}")
    if outcome.error is not None:
        retry = " (retryable)" if outcome.error.retryable else ""
        console.print(f"  Error: {outcome.error.kind.value}{retry}: {outcome.error.message}")


def print_risks_table(risks: Sequence[AcceptedRisk], *, now: datetime | None = None) -> None:
    """Pretty-print accepted risks with their current status."""
    now = now or datetime.now(UTC)
    table = Table(title="Accepted Risks")
    table.add_column("Id", style="cyan")
    table.add_column("Code")
    table.add_column("Environments")
    table.add_column("Expires")
    table.add_column("Status")
    table.add_column("Justification")

    for risk in risks:
        status = "[red]expired[/red]" if risk.is_expired(now) else "[green]active[/green]"
        table.add_row(
            risk.ref,
            risk.code,
            ", ".join(risk.scope.environments),
            risk.expires_at.isoformat() if risk.expires_at else "never",
            status,
            _truncate(risk.justification),
        )

    console.print(table)


def _truncate(text: str, max_len: int = 80) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
