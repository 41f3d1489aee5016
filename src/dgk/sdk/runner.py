"""Pipeline loading, wiring and execution for the dgk SDK."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import SecretStr, TypeAdapter, ValidationError

from dgk.apply.coordinator import ApplyCoordinator
from dgk.apply.lock import LockManager
from dgk.apply.mutator import CommandMutator
from dgk.apply.state import InMemoryStateStore
from dgk.core.errors import ConfigError
from dgk.credentials.broker import CredentialBroker
from dgk.credentials.models import CredentialScope, TrustAssertion
from dgk.credentials.providers import (
    EnvAssertionSource,
    HTTPTrustProvider,
    StaticTrustProvider,
)
from dgk.gates.command import CommandGate, SecretScanGate
from dgk.gates.parsers import get_parser
from dgk.gates.runner import GateGraph, GateRunner, GateSpec
from dgk.gates.severity import SeverityMap
from dgk.pipeline.audit import OutcomeLog
from dgk.pipeline.pipeline import DeploymentTarget, Pipeline
from dgk.policy.engine import PolicyEngine
from dgk.policy.models import AcceptedRisk
from dgk.runtime.sandbox.executor import create_sandbox
from dgk.sdk.models import PipelineSpec
from dgk.utils.telemetry import configure_telemetry

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from dgk.apply.mutator import Mutator
    from dgk.apply.state import StateStore
    from dgk.core.models import ChangeDescriptor, Decision, Outcome
    from dgk.credentials.providers import AssertionSource, TrustProvider
    from dgk.gates.base import Gate
    from dgk.runtime.sandbox.executor import SandboxExecutor
    from dgk.sdk.models import EnvironmentSettings, GateSettings

_RISKS_ADAPTER = TypeAdapter(list[AcceptedRisk])


def _read_yaml(path: Path) -> Any:
    """Read *path*, expand ``$VAR``/``${VAR}`` references and parse it."""
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc

    try:
        return yaml.safe_load(os.path.expandvars(raw))
    except yaml.YAMLError as exc:
        raise ConfigError(f"YAML parse error in {path}: {exc}") from exc


class PipelineLoader:
    """Load and validate a pipeline YAML file into a :class:`PipelineSpec`."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def load(self) -> PipelineSpec:
        """Read YAML, interpolate env vars, and validate.

        Environment variables in the form ``${VAR}`` or ``$VAR`` are expanded
        using :func:`os.path.expandvars` before YAML parsing.

        Raises:
            ConfigError: On YAML parse errors or schema validation failures.
        """
        data = _read_yaml(self._path)
        if not isinstance(data, dict):
            raise ConfigError("Pipeline YAML must be a mapping")

        try:
            return PipelineSpec.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(str(exc)) from exc


def load_accepted_risks(path: Path) -> list[AcceptedRisk]:
    """Load accepted risks from a YAML file.

    The file is either a list of entries or a mapping with an
    ``exceptions`` key holding that list.
    """
    data = _read_yaml(path)
    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("exceptions", [])
    try:
        return _RISKS_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid accepted risks in {path}: {exc}") from exc


def collect_accepted_risks(spec: PipelineSpec, base_dir: Path) -> list[AcceptedRisk]:
    """Inline accepted risks followed by those in ``exceptions_file``."""
    risks = list(spec.exceptions)
    if spec.exceptions_file:
        risks.extend(load_accepted_risks(base_dir / spec.exceptions_file))
    return risks


class PipelineBuilder:
    """Wire a validated :class:`PipelineSpec` into runnable pipelines.

    The gate graph is built (and so validated) on construction.  Every
    pipeline built by one builder shares its state store, so two runs
    against the same environment serialize on the same lock.

    Collaborators can be injected; otherwise they are created from the
    spec.
    """

    def __init__(
        self,
        spec: PipelineSpec,
        *,
        base_dir: Path | None = None,
        executor: SandboxExecutor | None = None,
        store: StateStore | None = None,
        trust_provider: TrustProvider | None = None,
        assertions: AssertionSource | None = None,
        mutator: Mutator | None = None,
        gates: dict[str, Gate] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.spec = spec
        self.base_dir = base_dir or Path.cwd()
        self._executor = executor or create_sandbox(spec.sandbox)
        self._store = store or InMemoryStateStore()
        self._trust_provider = trust_provider
        self._assertions = assertions
        self._mutator = mutator
        self._gate_overrides = dict(gates or {})
        self._clock = clock
        self.graph = self.build_graph()
        self.exceptions = self.load_exceptions()

    @classmethod
    def from_yaml(cls, path: str | Path, **kwargs: Any) -> PipelineBuilder:
        """Load a pipeline YAML and return a ready-to-use builder."""
        p = Path(path)
        spec = PipelineLoader(p).load()
        return cls(spec, base_dir=p.parent, **kwargs)

    def build_graph(self) -> GateGraph:
        """Build the gate DAG.

        Raises:
            ConfigError: On unknown parsers, duplicate names or cycles.
        """
        specs = [
            GateSpec(
                gate=self._gate_overrides.get(settings.name) or self._build_gate(settings),
                timeout=settings.timeout,
                requires=tuple(settings.requires),
                advisory=settings.advisory,
            )
            for settings in self.spec.gates
        ]
        return GateGraph.build(specs)

    def load_exceptions(self) -> list[AcceptedRisk]:
        return collect_accepted_risks(self.spec, self.base_dir)

    def policy(self) -> PolicyEngine:
        return PolicyEngine(self.spec.severity_threshold, clock=self._clock)

    def runner(self) -> GateRunner:
        return GateRunner(max_concurrency=self.spec.max_concurrency)

    def build(self, change: ChangeDescriptor) -> Pipeline:
        """Return a fresh :class:`Pipeline` for *change*.

        Raises:
            ConfigError: If ``change.environment`` is not configured.
        """
        env = self._environment(change.environment)
        locks = LockManager(
            self._store,
            ttl=env.lock_ttl,
            wait_timeout=env.lock_wait,
            clock=self._clock,
        )
        coordinator = ApplyCoordinator(locks, self._get_mutator(), namespace=env.lock_namespace)
        broker = CredentialBroker(self._get_trust_provider(), self._get_assertions(), clock=self._clock)
        target = DeploymentTarget(
            scope=CredentialScope.for_environment(change.environment, env.role),
            max_credential_lifetime=env.max_credential_lifetime,
        )
        return Pipeline(
            change,
            graph=self.graph,
            runner=self.runner(),
            policy=self.policy(),
            broker=broker,
            coordinator=coordinator,
            target=target,
            exceptions=self.exceptions,
            audit=self.audit_log(),
            clock=self._clock,
        )

    async def check(self, change: ChangeDescriptor) -> Decision:
        """Run the gates and decide, without credentials or apply."""
        self._environment(change.environment)
        report = await self.runner().run(change, self.graph)
        return self.policy().decide(report, self.exceptions)

    def audit_log(self) -> OutcomeLog | None:
        if not self.spec.audit_log:
            return None
        return OutcomeLog(self.base_dir / self.spec.audit_log)

    def configure_telemetry(self) -> None:
        telemetry = self.spec.telemetry
        if telemetry and telemetry.enabled:
            configure_telemetry(
                service_name=self.spec.name or "dgk",
                export_to_console=telemetry.console,
                otlp_endpoint=telemetry.otlp_endpoint,
            )

    async def aclose(self) -> None:
        await self._executor.cleanup()

    def _environment(self, name: str) -> EnvironmentSettings:
        try:
            return self.spec.environment(name)
        except KeyError as exc:
            raise ConfigError(exc.args[0]) from None

    def _build_gate(self, settings: GateSettings) -> Gate:
        try:
            _, default_map = get_parser(settings.tool)
        except KeyError:
            raise ConfigError(f"gate {settings.name!r}: unknown tool {settings.tool!r}") from None

        severities = default_map.merged(settings.severity_map)
        if settings.default_severity is not None:
            severities = SeverityMap(mapping=severities.mapping, default=settings.default_severity)

        if settings.secret_scan:
            return SecretScanGate(
                settings.name,
                settings.command,
                executor=self._executor,
                tool=settings.tool,
                severities=severities,
                fail_on=settings.fail_on,
                env=settings.env,
            )
        return CommandGate(
            settings.name,
            settings.command,
            executor=self._executor,
            tool=settings.tool,
            severities=severities,
            fail_on=settings.fail_on,
            env=settings.env,
        )

    def _get_mutator(self) -> Mutator:
        if self._mutator is None:
            m = self.spec.mutator
            self._mutator = CommandMutator(
                m.plan,
                m.apply,
                executor=self._executor,
                credential_env=m.credential_env,
                detailed_exitcode=m.detailed_exitcode,
                timeout=m.timeout,
                env=m.env,
            )
        return self._mutator

    def _get_trust_provider(self) -> TrustProvider:
        if self._trust_provider is None:
            settings = self.spec.trust_provider
            if settings.type == "http":
                assert settings.endpoint is not None
                self._trust_provider = HTTPTrustProvider(settings.endpoint, timeout=settings.timeout)
            else:
                assert settings.token is not None
                self._trust_provider = StaticTrustProvider(settings.token)
        return self._trust_provider

    def _get_assertions(self) -> AssertionSource:
        if self._assertions is None:
            settings = self.spec.trust_provider
            if settings.type == "static":
                self._assertions = _StaticAssertionSource(settings.audience)
            else:
                self._assertions = EnvAssertionSource(settings.assertion_env, audience=settings.audience)
        return self._assertions


class _StaticAssertionSource:
    """Placeholder assertion for the static (development) provider."""

    def __init__(self, audience: str) -> None:
        self._audience = audience

    async def assertion(self) -> TrustAssertion:
        return TrustAssertion(token=SecretStr("static"), subject="local", audience=self._audience)


async def run_pipeline(config_path: str | Path, change: ChangeDescriptor) -> Outcome:
    """Load *config_path*, run one pipeline for *change* and return its outcome."""
    builder = PipelineBuilder.from_yaml(config_path)
    builder.configure_telemetry()
    try:
        return await builder.build(change).run()
    finally:
        await builder.aclose()


async def check_change(config_path: str | Path, change: ChangeDescriptor) -> Decision:
    """Gate *change* and return the decision without touching the target."""
    builder = PipelineBuilder.from_yaml(config_path)
    builder.configure_telemetry()
    try:
        return await builder.check(change)
    finally:
        await builder.aclose()
