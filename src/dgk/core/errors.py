"""Error taxonomy for the gatekeeper.

Every error carries an :class:`ErrorKind` so the pipeline can turn it into an
audit record without inspecting the exception type.  Policy blocks are *not*
errors: they are ordinary :class:`~dgk.core.models.Decision` values.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Category of a failure, as recorded on an :class:`~dgk.core.models.Outcome`."""

    CONFIG = "config"
    GATE_ERROR = "gate_error"
    POLICY_BLOCK = "policy_block"
    CREDENTIAL_INTEGRITY = "credential_integrity"
    CREDENTIAL_EXCHANGE = "credential_exchange"
    LOCK_CONTENTION = "lock_contention"
    APPLY_FAILURE = "apply_failure"
    INVARIANT = "invariant"
    CANCELLED = "cancelled"


class GatekeeperError(Exception):
    """Base error for all gatekeeper failures."""

    kind: ErrorKind = ErrorKind.INVARIANT
    retryable: bool = False


class ConfigError(GatekeeperError):
    """Configuration is malformed or incomplete; the pipeline never starts."""

    kind = ErrorKind.CONFIG


class GateExecutionError(GatekeeperError):
    """A gate's underlying tool crashed or produced unusable output.

    ``code`` becomes the finding code of the resulting ERROR verdict.
    """

    kind = ErrorKind.GATE_ERROR

    def __init__(self, gate: str, detail: str = "", *, code: str = "gate-error") -> None:
        self.gate = gate
        self.detail = detail
        self.code = code
        super().__init__(f"Gate {gate} failed" + (f": {detail}" if detail else ""))


class GateTimeoutError(GateExecutionError):
    """A gate exceeded its timeout."""

    def __init__(self, gate: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(gate, f"timed out after {timeout}s", code="gate-timeout")


class CredentialIntegrityError(GatekeeperError):
    """Issued credentials do not match what was requested."""

    kind = ErrorKind.CREDENTIAL_INTEGRITY


class CredentialExchangeError(GatekeeperError):
    """The trust exchange itself failed (provider unreachable or refused)."""

    kind = ErrorKind.CREDENTIAL_EXCHANGE
    retryable = True


class LockContentionError(GatekeeperError):
    """The state lock could not be acquired within the bounded wait."""

    kind = ErrorKind.LOCK_CONTENTION
    retryable = True

    def __init__(self, key: str, waited: float) -> None:
        self.key = key
        self.waited = waited
        super().__init__(f"Lock {key} still held after waiting {waited}s")


class ApplyFailureError(GatekeeperError):
    """The mutating operation was attempted and failed."""

    kind = ErrorKind.APPLY_FAILURE

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__("Apply failed" + (f": {detail}" if detail else ""))


class GateBypassError(GatekeeperError):
    """A privileged step was invoked without an ALLOW decision."""

    kind = ErrorKind.INVARIANT


class PipelineCancelledError(GatekeeperError):
    """The pipeline was cancelled before any mutation began."""

    kind = ErrorKind.CANCELLED


class SandboxError(GatekeeperError):
    """A sandbox operation failed (creation, execution, or cleanup)."""

    kind = ErrorKind.GATE_ERROR

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__("Sandbox error" + (f": {detail}" if detail else ""))


class SandboxTimeoutError(SandboxError):
    """Sandbox execution exceeded the configured timeout."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Execution timed out after {timeout}s")
