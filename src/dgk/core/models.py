"""Core data models — the values that flow through a gated deployment.

Everything here is immutable once built: verdicts are produced exactly once
per gate execution, reports are frozen before the policy engine reads them,
and outcomes are append-only audit records.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from dgk.core.errors import ErrorKind

_FINGERPRINT_RE = re.compile(r"^[0-9a-f]{64}$")
_ENVIRONMENT_RE = re.compile(r"^[a-z][a-z0-9-]{0,31}$")


def validate_environment(value: str) -> str:
    """Return *value* if it is a well-formed environment identifier."""
    if not _ENVIRONMENT_RE.match(value):
        msg = f"invalid environment identifier: {value!r}"
        raise ValueError(msg)
    return value


class Severity(str, Enum):
    """Fixed five-level finding severity scale."""

    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, other: Severity) -> bool:
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: str | Severity) -> Severity:
        """Case-insensitive lookup (``"HIGH"`` and ``"high"`` both work)."""
        if isinstance(value, Severity):
            return value
        if not isinstance(value, str):
            msg = f"invalid severity: {value!r}"
            raise ValueError(msg)
        return cls(value.strip().lower())


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class GateOutcome(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"


class DecisionOutcome(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"


class ApplyStatus(str, Enum):
    NOT_ATTEMPTED = "not_attempted"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PipelineState(str, Enum):
    """States of the :class:`~dgk.pipeline.pipeline.Pipeline` state machine."""

    INIT = "init"
    GATING = "gating"
    BLOCKED = "blocked"
    CREDENTIALING = "credentialing"
    APPLYING = "applying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (PipelineState.BLOCKED, PipelineState.SUCCEEDED, PipelineState.FAILED)


class ChangeDescriptor(BaseModel):
    """Identifies one proposed change to one target environment."""

    model_config = ConfigDict(frozen=True)

    fingerprint: str = Field(..., description="sha256 hex digest of the full proposed configuration set.")
    environment: str = Field(..., description="Target environment identifier, e.g. 'dev'.")
    source: Path | None = Field(default=None, description="Directory holding the change content.")
    revision: str | None = Field(default=None, description="VCS revision the change was taken from.")

    @field_validator("fingerprint")
    @classmethod
    def _check_fingerprint(cls, value: str) -> str:
        if not _FINGERPRINT_RE.match(value):
            msg = "fingerprint must be a lowercase sha256 hex digest"
            raise ValueError(msg)
        return value

    @field_validator("environment")
    @classmethod
    def _check_environment(cls, value: str) -> str:
        return validate_environment(value)

    @classmethod
    def from_directory(
        cls,
        path: Path,
        environment: str,
        *,
        revision: str | None = None,
    ) -> ChangeDescriptor:
        """Fingerprint the configuration under *path* and describe it."""
        from dgk.utils.fingerprint import fingerprint_directory

        return cls(
            fingerprint=fingerprint_directory(path),
            environment=environment,
            source=path,
            revision=revision,
        )

    @property
    def short(self) -> str:
        return f"{self.environment}@{self.fingerprint[:12]}"


class Finding(BaseModel):
    """A single issue reported by a gate."""

    model_config = ConfigDict(frozen=True)

    severity: Severity
    code: str = Field(..., description="Stable identifier of the rule that fired.")
    message: str = ""
    location: str | None = Field(default=None, description="File and line, when the tool reports one.")
    suppressed: bool = False


class Verdict(BaseModel):
    """The immutable result of one gate execution."""

    model_config = ConfigDict(frozen=True)

    gate: str
    outcome: GateOutcome
    findings: tuple[Finding, ...] = ()
    duration: float = Field(default=0.0, description="Wall-clock seconds spent in the gate.")
    advisory: bool = False

    @property
    def passed(self) -> bool:
        return self.outcome == GateOutcome.PASS


class Report(BaseModel):
    """Ordered verdicts for one change, in declared gate order."""

    model_config = ConfigDict(frozen=True)

    change: ChangeDescriptor
    verdicts: tuple[Verdict, ...]
    started_at: datetime
    finished_at: datetime

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def verdict(self, gate: str) -> Verdict:
        for verdict in self.verdicts:
            if verdict.gate == gate:
                return verdict
        raise KeyError(gate)


class AssessedFinding(BaseModel):
    """A finding plus the policy engine's judgement of it."""

    model_config = ConfigDict(frozen=True)

    gate: str
    finding: Finding
    blocking: bool
    advisory: bool = False
    suppressed_by: str | None = Field(default=None, description="Id of the accepted risk that suppressed it.")


class Decision(BaseModel):
    """ALLOW or BLOCK, with everything needed to explain why."""

    model_config = ConfigDict(frozen=True)

    outcome: DecisionOutcome
    threshold: Severity
    evaluated_at: datetime
    findings: tuple[AssessedFinding, ...] = ()
    errored_gates: tuple[str, ...] = ()
    report: Report

    @property
    def allowed(self) -> bool:
        return self.outcome == DecisionOutcome.ALLOW

    @computed_field  # type: ignore[prop-decorator]
    @property
    def blocking_findings(self) -> tuple[AssessedFinding, ...]:
        return tuple(f for f in self.findings if f.blocking)


class ApplyResult(BaseModel):
    """Result of one :meth:`~dgk.apply.coordinator.ApplyCoordinator.apply` call."""

    model_config = ConfigDict(frozen=True)

    status: ApplyStatus
    detail: str = ""
    plan_summary: str = ""
    duration: float = 0.0


class ErrorDetail(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    retryable: bool = False


class Outcome(BaseModel):
    """Terminal, append-only record of one pipeline run."""

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    change: ChangeDescriptor
    state: PipelineState
    decision: Decision | None = None
    apply_status: ApplyStatus = ApplyStatus.NOT_ATTEMPTED
    error: ErrorDetail | None = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = Field(default_factory=dict)
