"""PolicyEngine — reduces a Report and accepted risks to ALLOW or BLOCK.

Pure logic, no I/O.  For every finding at or above the threshold the
engine looks for an unexpired accepted risk covering it; a covered finding
is kept (marked suppressed) but does not block.  Findings of advisory gates
never block.  The decision is ALLOW iff nothing blocks and no non-advisory
gate ended in ERROR.

"Now" is read once per :meth:`PolicyEngine.decide` call so a change cannot
straddle an expiry boundary mid-decision.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from dgk.core.models import (
    AssessedFinding,
    Decision,
    DecisionOutcome,
    GateOutcome,
    Severity,
)
from dgk.utils.telemetry import ATTR_BLOCKING_COUNT, ATTR_DECISION, ATTR_THRESHOLD, get_tracer

if TYPE_CHECKING:
    from collections.abc import Iterable

    from dgk.core.models import ChangeDescriptor, Finding, Report
    from dgk.policy.models import AcceptedRisk

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PolicyEngine:
    """Evaluate a :class:`Report` against accepted risks and a threshold."""

    def __init__(self, threshold: Severity = Severity.HIGH, *, clock: Clock | None = None) -> None:
        self._threshold = threshold
        self._clock = clock or _utcnow

    @property
    def threshold(self) -> Severity:
        return self._threshold

    def decide(
        self,
        report: Report,
        exceptions: Iterable[AcceptedRisk],
        threshold: Severity | None = None,
        *,
        now: datetime | None = None,
    ) -> Decision:
        """Return the :class:`Decision` for *report*.

        Deterministic: identical report, exceptions, threshold and *now*
        always produce an identical decision.  When *now* is omitted the
        engine's clock is read exactly once.
        """
        effective = threshold or self._threshold
        evaluated_at = now or self._clock()
        if evaluated_at.tzinfo is None:
            evaluated_at = evaluated_at.replace(tzinfo=UTC)
        # Stable candidate order: latest expiry first (no expiry sorts first), then ref.
        accepted = sorted(
            exceptions,
            key=lambda e: (e.expires_at is not None, -(e.expires_at.timestamp()) if e.expires_at else 0.0, e.ref),
        )

        with _tracer.start_as_current_span("policy.decide") as span:
            assessed: list[AssessedFinding] = []
            errored: list[str] = []

            for verdict in report.verdicts:
                if verdict.outcome == GateOutcome.ERROR and not verdict.advisory:
                    errored.append(verdict.gate)
                for finding in verdict.findings:
                    assessed.append(
                        self._assess(
                            finding,
                            gate=verdict.gate,
                            advisory=verdict.advisory,
                            change=report.change,
                            accepted=accepted,
                            threshold=effective,
                            now=evaluated_at,
                        )
                    )

            blocking = [a for a in assessed if a.blocking]
            outcome = DecisionOutcome.ALLOW if not blocking and not errored else DecisionOutcome.BLOCK

            span.set_attribute(ATTR_DECISION, outcome.value)
            span.set_attribute(ATTR_THRESHOLD, effective.value)
            span.set_attribute(ATTR_BLOCKING_COUNT, len(blocking))

        logger.info(
            "Decision for %s: %s (%d blocking finding(s), %d errored gate(s))",
            report.change.short,
            outcome.value,
            len(blocking),
            len(errored),
        )
        return Decision(
            outcome=outcome,
            threshold=effective,
            evaluated_at=evaluated_at,
            findings=tuple(assessed),
            errored_gates=tuple(errored),
            report=report,
        )

    @staticmethod
    def _assess(
        finding: Finding,
        *,
        gate: str,
        advisory: bool,
        change: ChangeDescriptor,
        accepted: list[AcceptedRisk],
        threshold: Severity,
        now: datetime,
    ) -> AssessedFinding:
        if not finding.severity.at_least(threshold):
            return AssessedFinding(gate=gate, finding=finding, blocking=False, advisory=advisory)

        for risk in accepted:
            # An expired acceptance is treated exactly like no acceptance.
            if risk.matches(finding.code, change, gate) and not risk.is_expired(now):
                return AssessedFinding(
                    gate=gate,
                    finding=finding.model_copy(update={"suppressed": True}),
                    blocking=False,
                    advisory=advisory,
                    suppressed_by=risk.ref,
                )

        return AssessedFinding(gate=gate, finding=finding, blocking=not advisory, advisory=advisory)
