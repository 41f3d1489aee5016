"""Builders and fakes shared across the dgk test suite."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from pydantic import SecretStr

from dgk.apply.mutator import ProposedDiff
from dgk.core.models import (
    ChangeDescriptor,
    Decision,
    DecisionOutcome,
    Finding,
    GateOutcome,
    Report,
    Severity,
    Verdict,
)
from dgk.credentials.models import Credential, CredentialScope
from dgk.gates.base import BaseGate

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

FINGERPRINT = "ab" * 32
OTHER_FINGERPRINT = "cd" * 32
ROLE = "arn:aws:iam::123456789012:role/deployer"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def make_change(environment: str = "dev", *, source: Path | None = None, fingerprint: str = FINGERPRINT) -> ChangeDescriptor:
    return ChangeDescriptor(fingerprint=fingerprint, environment=environment, source=source)


def finding(code: str, severity: Severity = Severity.HIGH, message: str = "") -> Finding:
    return Finding(severity=severity, code=code, message=message)


def make_report(change: ChangeDescriptor, *verdicts: Verdict) -> Report:
    return Report(change=change, verdicts=verdicts, started_at=NOW, finished_at=NOW + timedelta(seconds=1))


def verdict(
    gate: str,
    *findings: Finding,
    outcome: GateOutcome | None = None,
    advisory: bool = False,
) -> Verdict:
    if outcome is None:
        outcome = GateOutcome.FAIL if findings else GateOutcome.PASS
    return Verdict(gate=gate, outcome=outcome, findings=findings, advisory=advisory)


def allow_decision(change: ChangeDescriptor) -> Decision:
    return Decision(
        outcome=DecisionOutcome.ALLOW,
        threshold=Severity.HIGH,
        evaluated_at=NOW,
        report=make_report(change, verdict("lint")),
    )


def block_decision(change: ChangeDescriptor) -> Decision:
    return Decision(
        outcome=DecisionOutcome.BLOCK,
        threshold=Severity.HIGH,
        evaluated_at=NOW,
        report=make_report(change, verdict("lint", finding("R1"))),
    )


class StaticGate(BaseGate):
    """Gate returning canned findings, optionally after a delay or with an error."""

    def __init__(
        self,
        name: str,
        findings: Sequence[Finding] = (),
        *,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        super().__init__(name)
        self.findings = list(findings)
        self.delay = delay
        self.error = error
        self.calls = 0
        self.cancelled = False

    async def inspect(self, change: ChangeDescriptor) -> Sequence[Finding]:
        self.calls += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return self.findings


class RecordingMutator:
    """Mutator that records calls; satisfies the ``Mutator`` protocol."""

    def __init__(
        self,
        *,
        has_changes: bool = True,
        fail_with: Exception | None = None,
        delay: float = 0.0,
        events: list[str] | None = None,
    ) -> None:
        self.has_changes = has_changes
        self.fail_with = fail_with
        self.delay = delay
        self.events = events if events is not None else []
        self.plans = 0
        self.applies = 0
        self.tokens: list[str] = []

    async def plan(self, change: ChangeDescriptor, *, credential: Credential) -> ProposedDiff:
        self.plans += 1
        self.events.append(f"plan:{change.environment}")
        return ProposedDiff(has_changes=self.has_changes, summary="1 to change")

    async def apply(self, change: ChangeDescriptor, diff: ProposedDiff, *, credential: Credential) -> str:
        self.applies += 1
        self.tokens.append(credential.secret())
        self.events.append(f"apply-start:{change.environment}")
        if self.delay:
            await asyncio.sleep(self.delay)
        self.events.append(f"apply-end:{change.environment}")
        if self.fail_with is not None:
            raise self.fail_with
        return "Apply complete! Resources: 1 changed."


def make_credential(environment: str = "dev", token: str = "sts-token-xyz") -> Credential:
    return Credential(
        token=SecretStr(token),
        scope=CredentialScope.for_environment(environment, ROLE),
        issued_at=NOW,
        expires_at=NOW + timedelta(minutes=30),
    )
