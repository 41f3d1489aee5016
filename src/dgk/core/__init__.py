"""Core data model and error taxonomy."""

from dgk.core.errors import (
    ApplyFailureError,
    ConfigError,
    CredentialExchangeError,
    CredentialIntegrityError,
    ErrorKind,
    GateBypassError,
    GateExecutionError,
    GatekeeperError,
    GateTimeoutError,
    LockContentionError,
    PipelineCancelledError,
)
from dgk.core.models import (
    ApplyResult,
    ApplyStatus,
    AssessedFinding,
    ChangeDescriptor,
    Decision,
    DecisionOutcome,
    ErrorDetail,
    Finding,
    GateOutcome,
    Outcome,
    PipelineState,
    Report,
    Severity,
    Verdict,
)

__all__ = [
    "ApplyFailureError",
    "ApplyResult",
    "ApplyStatus",
    "AssessedFinding",
    "ChangeDescriptor",
    "ConfigError",
    "CredentialExchangeError",
    "CredentialIntegrityError",
    "Decision",
    "DecisionOutcome",
    "ErrorDetail",
    "ErrorKind",
    "Finding",
    "GateBypassError",
    "GateExecutionError",
    "GateOutcome",
    "GateTimeoutError",
    "GatekeeperError",
    "LockContentionError",
    "Outcome",
    "PipelineCancelledError",
    "PipelineState",
    "Report",
    "Severity",
    "Verdict",
]
