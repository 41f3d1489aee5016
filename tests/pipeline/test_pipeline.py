"""Tests for the Pipeline state machine."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest
from pydantic import SecretStr

from dgk.apply.coordinator import ApplyCoordinator
from dgk.apply.lock import LockKey, LockManager
from dgk.apply.state import InMemoryStateStore
from dgk.core.errors import (
    ApplyFailureError,
    CredentialIntegrityError,
    ErrorKind,
    PipelineCancelledError,
)
from dgk.core.models import ApplyStatus, PipelineState, Severity
from dgk.credentials.broker import CredentialBroker
from dgk.credentials.models import CredentialScope, TrustAssertion
from dgk.credentials.providers import StaticTrustProvider
from dgk.gates.runner import GateGraph, GateRunner, GateSpec
from dgk.pipeline.audit import OutcomeLog
from dgk.pipeline.pipeline import DeploymentTarget, Pipeline
from dgk.policy.engine import PolicyEngine
from dgk.policy.models import AcceptedRisk
from tests.helpers import ROLE, RecordingMutator, StaticGate, finding, make_change

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from dgk.core.models import ChangeDescriptor
    from dgk.credentials.providers import TrustProvider

_LIFETIME = timedelta(minutes=30)


class CountingProvider:
    """Wraps a provider and counts exchanges."""

    def __init__(self, inner: TrustProvider) -> None:
        self.inner = inner
        self.calls = 0

    async def exchange(self, assertion, scope, lifetime):
        self.calls += 1
        return await self.inner.exchange(assertion, scope, lifetime)


class CIAssertions:
    async def assertion(self) -> TrustAssertion:
        return TrustAssertion(token=SecretStr("ci-jwt"))


class UnreachableStateStore(InMemoryStateStore):
    """A state store whose backend drops every write."""

    async def compare_and_swap(self, key, expected, new):
        raise ConnectionError("state backend unreachable")


class Harness:
    """Builds pipelines with shared fakes."""

    def __init__(self, tmp_path: Path) -> None:
        self.store = InMemoryStateStore()
        self.mutator = RecordingMutator()
        self.provider = CountingProvider(StaticTrustProvider("sts-token-xyz"))
        self.audit = OutcomeLog(tmp_path / "audit.jsonl")
        self.lock_wait = 1.0

    def pipeline(
        self,
        change: ChangeDescriptor,
        gates: Sequence[StaticGate] = (),
        *,
        exceptions: Sequence[AcceptedRisk] = (),
    ) -> Pipeline:
        graph = GateGraph.build([GateSpec(gate=g, timeout=5.0) for g in gates or [StaticGate("lint")]])
        locks = LockManager(self.store, wait_timeout=self.lock_wait, poll_interval=0.01)
        return Pipeline(
            change,
            graph=graph,
            runner=GateRunner(),
            policy=PolicyEngine(Severity.HIGH),
            broker=CredentialBroker(self.provider, CIAssertions()),
            coordinator=ApplyCoordinator(locks, self.mutator, namespace="infra"),
            target=DeploymentTarget(CredentialScope.for_environment(change.environment, ROLE), _LIFETIME),
            exceptions=exceptions,
            audit=self.audit,
        )


@pytest.fixture
def harness(tmp_path: Path) -> Harness:
    return Harness(tmp_path)


async def wait_for_state(pipeline: Pipeline, state: PipelineState) -> None:
    async def poll() -> None:
        while pipeline.state != state:
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout=2.0)


class TestHappyPath:
    async def test_allow_applies(self, harness: Harness) -> None:
        change = make_change("dev")
        pipeline = harness.pipeline(change)
        outcome = await pipeline.run()

        assert outcome.state == PipelineState.SUCCEEDED
        assert outcome.apply_status == ApplyStatus.SUCCEEDED
        assert outcome.error is None
        assert outcome.decision is not None and outcome.decision.allowed
        assert pipeline.transitions == (
            PipelineState.INIT,
            PipelineState.GATING,
            PipelineState.CREDENTIALING,
            PipelineState.APPLYING,
            PipelineState.SUCCEEDED,
        )
        assert harness.mutator.tokens == ["sts-token-xyz"]
        assert [o.run_id for o in harness.audit.read()] == [outcome.run_id]

    async def test_accepted_risk_allows(self, harness: Harness) -> None:
        change = make_change("dev")
        accepted = AcceptedRisk(code="CKV_AWS_20", justification="public site bucket")
        pipeline = harness.pipeline(change, [StaticGate("scan", [finding("CKV_AWS_20")])], exceptions=[accepted])

        outcome = await pipeline.run()
        assert outcome.state == PipelineState.SUCCEEDED
        assert outcome.decision.findings[0].suppressed_by == accepted.ref

    async def test_runs_only_once(self, harness: Harness) -> None:
        pipeline = harness.pipeline(make_change("dev"))
        await pipeline.run()
        with pytest.raises(RuntimeError, match="only once"):
            await pipeline.run()


class TestBlocked:
    async def test_block_never_requests_credentials(self, harness: Harness) -> None:
        pipeline = harness.pipeline(make_change("dev"), [StaticGate("scan", [finding("CKV_AWS_20")])])
        outcome = await pipeline.run()

        assert outcome.state == PipelineState.BLOCKED
        assert outcome.apply_status == ApplyStatus.NOT_ATTEMPTED
        assert outcome.error.kind == ErrorKind.POLICY_BLOCK
        assert "scan:CKV_AWS_20" in outcome.error.message
        assert harness.provider.calls == 0
        assert harness.mutator.plans == 0
        assert PipelineState.CREDENTIALING not in pipeline.transitions

    async def test_errored_gate_blocks(self, harness: Harness) -> None:
        pipeline = harness.pipeline(make_change("dev"), [StaticGate("scan", error=RuntimeError("boom"))])
        outcome = await pipeline.run()

        assert outcome.state == PipelineState.BLOCKED
        assert "scan" in outcome.error.message
        assert harness.mutator.plans == 0

    async def test_medium_below_threshold_applies(self, harness: Harness) -> None:
        pipeline = harness.pipeline(make_change("dev"), [StaticGate("scan", [finding("CKV_AWS_18", Severity.MEDIUM)])])
        outcome = await pipeline.run()
        assert outcome.state == PipelineState.SUCCEEDED


class TestFailures:
    async def test_broader_credential_scope_raises_and_is_recorded(self, harness: Harness) -> None:
        harness.provider = CountingProvider(
            StaticTrustProvider("sts-token-xyz", granted_environments=frozenset({"prod", "dev"}))
        )
        pipeline = harness.pipeline(make_change("dev"))

        with pytest.raises(CredentialIntegrityError):
            await pipeline.run()

        assert pipeline.state == PipelineState.FAILED
        assert harness.mutator.plans == 0
        recorded = harness.audit.read()
        assert len(recorded) == 1
        assert recorded[0].state == PipelineState.FAILED
        assert recorded[0].error.kind == ErrorKind.CREDENTIAL_INTEGRITY
        assert "sts-token-xyz" not in harness.audit.path.read_text()

    async def test_lock_contention_is_failed_outcome(self, harness: Harness) -> None:
        holder = LockManager(harness.store)
        await holder.acquire(LockKey("infra", "dev"), run_id="other-run")
        harness.lock_wait = 0.05

        outcome = await harness.pipeline(make_change("dev")).run()

        assert outcome.state == PipelineState.FAILED
        assert outcome.apply_status == ApplyStatus.NOT_ATTEMPTED
        assert outcome.error.kind == ErrorKind.LOCK_CONTENTION
        assert outcome.error.retryable
        assert harness.mutator.plans == 0

    async def test_apply_failure_is_failed_outcome(self, harness: Harness) -> None:
        harness.mutator = RecordingMutator(fail_with=ApplyFailureError("quota exceeded"))
        outcome = await harness.pipeline(make_change("dev")).run()

        assert outcome.state == PipelineState.FAILED
        assert outcome.apply_status == ApplyStatus.FAILED
        assert outcome.error.kind == ErrorKind.APPLY_FAILURE
        assert "quota exceeded" in outcome.error.message
        assert await harness.store.get_lock("infra/dev") is None

    async def test_exchange_failure_is_failed_outcome(self, harness: Harness, monkeypatch: pytest.MonkeyPatch) -> None:
        from dgk.core.errors import CredentialExchangeError

        async def refuse(assertion, scope, lifetime):
            raise CredentialExchangeError("trust exchange refused with HTTP 403")

        monkeypatch.setattr(harness.provider, "exchange", refuse)
        outcome = await harness.pipeline(make_change("dev")).run()

        assert outcome.state == PipelineState.FAILED
        assert outcome.error.kind == ErrorKind.CREDENTIAL_EXCHANGE
        assert harness.mutator.plans == 0

    async def test_state_store_outage_is_recorded_and_raised(self, harness: Harness) -> None:
        harness.store = UnreachableStateStore()
        pipeline = harness.pipeline(make_change("dev"))

        with pytest.raises(ConnectionError, match="unreachable"):
            await pipeline.run()

        assert pipeline.state == PipelineState.FAILED
        assert harness.mutator.plans == 0
        recorded = harness.audit.read()
        assert len(recorded) == 1
        assert recorded[0].state == PipelineState.FAILED
        assert recorded[0].error.kind == ErrorKind.INVARIANT
        assert "ConnectionError" in recorded[0].error.message

    def test_target_must_cover_environment(self, harness: Harness) -> None:
        change = make_change("dev")
        with pytest.raises(ValueError, match="does not cover"):
            Pipeline(
                change,
                graph=GateGraph.build([GateSpec(gate=StaticGate("lint"))]),
                runner=GateRunner(),
                policy=PolicyEngine(),
                broker=CredentialBroker(harness.provider, CIAssertions()),
                coordinator=ApplyCoordinator(LockManager(harness.store), harness.mutator, namespace="infra"),
                target=DeploymentTarget(CredentialScope.for_environment("prod", ROLE)),
            )


class TestCancellation:
    async def test_cancel_during_gating(self, harness: Harness) -> None:
        slow = StaticGate("slow", delay=5.0)
        pipeline = harness.pipeline(make_change("dev"), [slow])
        task = asyncio.create_task(pipeline.run())
        await wait_for_state(pipeline, PipelineState.GATING)
        await asyncio.sleep(0.02)

        assert pipeline.cancel() is True
        with pytest.raises(PipelineCancelledError):
            await task

        assert slow.cancelled
        assert harness.provider.calls == 0
        assert harness.mutator.plans == 0
        assert harness.audit.read()[0].error.kind == ErrorKind.CANCELLED

    async def test_cancel_after_gates_finish_is_honoured(self, harness: Harness) -> None:
        pipeline = harness.pipeline(make_change("dev"))
        task = asyncio.create_task(pipeline.run())

        async def gates_finished() -> None:
            while pipeline._gating is None or not pipeline._gating.done():
                await asyncio.sleep(0)

        await asyncio.wait_for(gates_finished(), timeout=2.0)
        assert pipeline.state == PipelineState.GATING

        assert pipeline.cancel() is True
        with pytest.raises(PipelineCancelledError):
            await task

        assert pipeline.state == PipelineState.FAILED
        assert PipelineState.CREDENTIALING not in pipeline.transitions
        assert harness.provider.calls == 0
        assert harness.mutator.plans == 0
        assert harness.audit.read()[0].error.kind == ErrorKind.CANCELLED

    async def test_cancel_before_run(self, harness: Harness) -> None:
        pipeline = harness.pipeline(make_change("dev"))
        assert pipeline.cancel() is True
        with pytest.raises(PipelineCancelledError):
            await pipeline.run()
        assert harness.mutator.plans == 0

    async def test_cancel_refused_once_applying(self, harness: Harness) -> None:
        harness.mutator = RecordingMutator(delay=0.2)
        pipeline = harness.pipeline(make_change("dev"))
        task = asyncio.create_task(pipeline.run())
        await wait_for_state(pipeline, PipelineState.APPLYING)

        assert pipeline.cancel() is False
        outcome = await task
        assert outcome.state == PipelineState.SUCCEEDED

    async def test_task_cancellation_is_absorbed_while_applying(self, harness: Harness) -> None:
        events: list[str] = []
        harness.mutator = RecordingMutator(delay=0.2, events=events)
        pipeline = harness.pipeline(make_change("dev"))
        task = asyncio.create_task(pipeline.run())
        await wait_for_state(pipeline, PipelineState.APPLYING)

        task.cancel()
        outcome = await task

        assert outcome.state == PipelineState.SUCCEEDED
        assert events[-1] == "apply-end:dev"
        assert await harness.store.get_lock("infra/dev") is None


class TestSerialization:
    async def test_same_environment_pipelines_serialize(self, harness: Harness) -> None:
        events: list[str] = []
        harness.mutator = RecordingMutator(delay=0.05, events=events)
        change = make_change("dev")

        outcomes = await asyncio.gather(harness.pipeline(change).run(), harness.pipeline(change).run())

        assert all(o.state == PipelineState.SUCCEEDED for o in outcomes)
        applies = [e for e in events if e.startswith("apply")]
        assert applies == ["apply-start:dev", "apply-end:dev", "apply-start:dev", "apply-end:dev"]
        assert len(harness.audit.read()) == 2
