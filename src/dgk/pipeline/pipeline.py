"""Pipeline — the gatekeeper state machine.

::

    INIT -> GATING -> BLOCKED
                   -> CREDENTIALING -> APPLYING -> SUCCEEDED | FAILED

No transition skips GATING, and credentials are only requested after an
ALLOW decision.  Cancellation is honoured up to the end of GATING; from
CREDENTIALING on, the remaining work is shielded and runs to completion.

Each :class:`Pipeline` instance runs exactly once, for one change.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

from dgk.core.errors import (
    CredentialExchangeError,
    CredentialIntegrityError,
    ErrorKind,
    GatekeeperError,
    LockContentionError,
    PipelineCancelledError,
)
from dgk.core.models import (
    ApplyStatus,
    ErrorDetail,
    Outcome,
    PipelineState,
)
from dgk.utils.telemetry import (
    ATTR_ENVIRONMENT,
    ATTR_FINGERPRINT,
    ATTR_PIPELINE_STATE,
    ATTR_RUN_ID,
    get_tracer,
)

if TYPE_CHECKING:
    from dgk.apply.coordinator import ApplyCoordinator
    from dgk.core.models import ApplyResult, ChangeDescriptor, Decision, Severity
    from dgk.credentials.broker import CredentialBroker
    from dgk.credentials.models import CredentialScope
    from dgk.gates.runner import GateGraph, GateRunner
    from dgk.pipeline.audit import OutcomeLog
    from dgk.policy.engine import PolicyEngine
    from dgk.policy.models import AcceptedRisk

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)

_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.INIT: frozenset({PipelineState.GATING}),
    PipelineState.GATING: frozenset({PipelineState.BLOCKED, PipelineState.CREDENTIALING, PipelineState.FAILED}),
    PipelineState.CREDENTIALING: frozenset({PipelineState.APPLYING, PipelineState.FAILED}),
    PipelineState.APPLYING: frozenset({PipelineState.SUCCEEDED, PipelineState.FAILED}),
}


@dataclass(frozen=True)
class DeploymentTarget:
    """Per-environment credential settings."""

    scope: CredentialScope
    max_credential_lifetime: timedelta = timedelta(hours=1)


class Pipeline:
    """Run one change through gating, decision, credentials and apply."""

    def __init__(
        self,
        change: ChangeDescriptor,
        *,
        graph: GateGraph,
        runner: GateRunner,
        policy: PolicyEngine,
        broker: CredentialBroker,
        coordinator: ApplyCoordinator,
        target: DeploymentTarget,
        exceptions: Sequence[AcceptedRisk] = (),
        threshold: Severity | None = None,
        audit: OutcomeLog | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if change.environment not in target.scope.environments:
            msg = f"target scope {target.scope.describe()} does not cover {change.environment}"
            raise ValueError(msg)
        self.change = change
        self.run_id = uuid4().hex[:12]
        self._graph = graph
        self._runner = runner
        self._policy = policy
        self._broker = broker
        self._coordinator = coordinator
        self._target = target
        self._exceptions = tuple(exceptions)
        self._threshold = threshold
        self._audit = audit
        self._clock = clock or (lambda: datetime.now(UTC))

        self._state = PipelineState.INIT
        self._transitions: list[PipelineState] = [PipelineState.INIT]
        self._gating: asyncio.Task[object] | None = None
        self._cancel_requested = False
        self._started_at: datetime | None = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def transitions(self) -> tuple[PipelineState, ...]:
        """Every state visited, in order."""
        return tuple(self._transitions)

    def cancel(self) -> bool:
        """Request cancellation.  Honoured only before gating has finished."""
        if self._state in (PipelineState.INIT, PipelineState.GATING):
            self._cancel_requested = True
            if self._gating is not None:
                self._gating.cancel()
            logger.info("Pipeline %s: cancellation requested in %s", self.run_id, self._state.value)
            return True
        logger.warning(
            "Pipeline %s: cancellation refused in %s; mutation must run to completion",
            self.run_id,
            self._state.value,
        )
        return False

    async def run(self) -> Outcome:
        """Drive the state machine to a terminal state and return its outcome.

        Raises:
            PipelineCancelledError: If :meth:`cancel` was honoured.
            CredentialIntegrityError: After recording a FAILED outcome.
            Exception: Anything unexpected once credentialing has begun, also
                after recording a FAILED outcome.
        """
        if self._state != PipelineState.INIT:
            msg = "a Pipeline instance runs only once; create a new one per change"
            raise RuntimeError(msg)
        self._started_at = self._clock()

        with _tracer.start_as_current_span("pipeline.run") as span:
            span.set_attribute(ATTR_RUN_ID, self.run_id)
            span.set_attribute(ATTR_ENVIRONMENT, self.change.environment)
            span.set_attribute(ATTR_FINGERPRINT, self.change.fingerprint)
            outcome = await self._run()
            span.set_attribute(ATTR_PIPELINE_STATE, outcome.state.value)
        return outcome

    async def _run(self) -> Outcome:
        if self._cancel_requested:
            raise PipelineCancelledError(f"pipeline {self.run_id} cancelled before gating")

        self._transition(PipelineState.GATING)
        decision = await self._gate()

        if not decision.allowed:
            self._transition(PipelineState.BLOCKED)
            return self._finish(decision=decision)

        self._transition(PipelineState.CREDENTIALING)
        inner = asyncio.ensure_future(self._credential_and_apply(decision))
        try:
            result = await self._shielded(inner)
        except CredentialIntegrityError as exc:
            self._finish(decision=decision, error=exc, state=PipelineState.FAILED)
            raise
        except (CredentialExchangeError, LockContentionError) as exc:
            return self._finish(decision=decision, error=exc, state=PipelineState.FAILED)
        except Exception as exc:
            logger.error("Pipeline %s failed in %s: %s", self.run_id, self._state.value, type(exc).__name__)
            self._finish(
                decision=decision,
                apply_status=ApplyStatus.FAILED if self._state == PipelineState.APPLYING else ApplyStatus.NOT_ATTEMPTED,
                error=exc if isinstance(exc, GatekeeperError) else _unexpected(exc),
                state=PipelineState.FAILED,
            )
            raise

        if result.status == ApplyStatus.SUCCEEDED:
            self._transition(PipelineState.SUCCEEDED)
            return self._finish(decision=decision, apply_status=ApplyStatus.SUCCEEDED)

        self._transition(PipelineState.FAILED)
        return self._finish(
            decision=decision,
            apply_status=ApplyStatus.FAILED,
            error=ErrorDetail(kind=ErrorKind.APPLY_FAILURE, message=result.detail),
        )

    async def _gate(self) -> Decision:
        self._gating = asyncio.ensure_future(self._runner.run(self.change, self._graph))
        try:
            report = await self._gating
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if self._cancel_requested and (current is None or current.cancelling() == 0):
                raise self._cancelled_during_gating() from None
            raise
        finally:
            self._gating = None

        # cancel() may land after the gates finished but before this resumes.
        if self._cancel_requested:
            raise self._cancelled_during_gating()
        return self._policy.decide(report, self._exceptions, self._threshold)

    def _cancelled_during_gating(self) -> PipelineCancelledError:
        logger.info("Pipeline %s cancelled during gating", self.run_id)
        self._finish(
            error=ErrorDetail(kind=ErrorKind.CANCELLED, message="cancelled during gating"),
            state=PipelineState.FAILED,
        )
        return PipelineCancelledError(f"pipeline {self.run_id} cancelled during gating")

    async def _credential_and_apply(self, decision: Decision) -> ApplyResult:
        async with self._broker.session(
            decision,
            self._target.scope,
            self._target.max_credential_lifetime,
        ) as credential:
            self._transition(PipelineState.APPLYING)
            return await self._coordinator.apply(decision, self.change, credential, run_id=self.run_id)

    async def _shielded(self, inner: asyncio.Future[ApplyResult]) -> ApplyResult:
        """Await *inner*, refusing (and absorbing) any cancellation of the caller."""
        while True:
            try:
                return await asyncio.shield(inner)
            except asyncio.CancelledError:
                if inner.cancelled():
                    raise
                logger.warning(
                    "Pipeline %s: cancellation refused in %s; waiting for apply to finish",
                    self.run_id,
                    self._state.value,
                )
                current = asyncio.current_task()
                if current is not None:
                    current.uncancel()

    def _transition(self, new: PipelineState) -> None:
        allowed = _TRANSITIONS.get(self._state, frozenset())
        if new not in allowed:
            msg = f"illegal pipeline transition {self._state.value} -> {new.value}"
            raise RuntimeError(msg)
        logger.info("Pipeline %s: %s -> %s", self.run_id, self._state.value, new.value)
        self._state = new
        self._transitions.append(new)

    def _finish(
        self,
        *,
        decision: Decision | None = None,
        apply_status: ApplyStatus = ApplyStatus.NOT_ATTEMPTED,
        error: GatekeeperError | ErrorDetail | None = None,
        state: PipelineState | None = None,
    ) -> Outcome:
        if state is not None and self._state != state:
            self._transition(state)
        if isinstance(error, GatekeeperError):
            error = ErrorDetail(kind=error.kind, message=str(error), retryable=error.retryable)
        if decision is not None and not decision.allowed and error is None:
            error = ErrorDetail(kind=ErrorKind.POLICY_BLOCK, message=_block_reason(decision))

        outcome = Outcome(
            run_id=self.run_id,
            change=self.change,
            state=state or self._state,
            decision=decision,
            apply_status=apply_status,
            error=error,
            started_at=self._started_at or self._clock(),
            finished_at=self._clock(),
        )
        if self._audit is not None:
            self._audit.append(outcome)
        logger.info("Pipeline %s finished: %s", self.run_id, outcome.state.value)
        return outcome


def _unexpected(exc: Exception) -> ErrorDetail:
    return ErrorDetail(kind=ErrorKind.INVARIANT, message=f"unexpected {type(exc).__name__}: {exc}")


def _block_reason(decision: Decision) -> str:
    parts: list[str] = []
    if decision.errored_gates:
        parts.append(f"gate(s) errored: {', '.join(decision.errored_gates)}")
    blocking = decision.blocking_findings
    if blocking:
        codes = sorted({f"{a.gate}:{a.finding.code}" for a in blocking})
        parts.append(f"{len(blocking)} blocking finding(s): {', '.join(codes)}")
    return "; ".join(parts) or "blocked"
