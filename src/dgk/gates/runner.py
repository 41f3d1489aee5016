"""GateRunner — schedules gates over a dependency DAG and builds a Report.

The graph is validated when it is built (:meth:`GateGraph.build`), which
happens while the configuration loads.  A cycle or an unknown prerequisite
is a :class:`~dgk.core.errors.ConfigError` there, never a run-time surprise.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from dgk.core.errors import ConfigError
from dgk.core.models import Finding, GateOutcome, Report, Severity, Verdict
from dgk.gates.base import error_verdict
from dgk.utils.telemetry import ATTR_ENVIRONMENT, ATTR_FINGERPRINT, ATTR_GATE_COUNT, get_tracer

if TYPE_CHECKING:
    from collections.abc import Sequence

    from dgk.core.models import ChangeDescriptor
    from dgk.gates.base import Gate

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)

# Extra time the runner allows on top of a gate's own timeout before it
# stops waiting for a gate that does not honour it.
_TIMEOUT_GRACE = 5.0


@dataclass(frozen=True)
class GateSpec:
    """A registered gate plus its scheduling configuration."""

    gate: Gate
    timeout: float = 300.0
    requires: tuple[str, ...] = field(default_factory=tuple)
    advisory: bool = False

    @property
    def name(self) -> str:
        return self.gate.name


class GateGraph:
    """Validated, topologically ordered set of gates."""

    def __init__(self, specs: tuple[GateSpec, ...], order: tuple[str, ...]) -> None:
        self._specs = specs
        self._by_name = {s.name: s for s in specs}
        self._order = order

    @classmethod
    def build(cls, specs: Sequence[GateSpec]) -> GateGraph:
        """Validate *specs* and compute a stable topological order.

        Raises:
            ConfigError: On duplicate names, unknown prerequisites, or cycles.
        """
        names: list[str] = []
        for spec in specs:
            if spec.name in names:
                raise ConfigError(f"duplicate gate name: {spec.name!r}")
            if spec.timeout <= 0:
                raise ConfigError(f"gate {spec.name!r} timeout must be positive")
            names.append(spec.name)

        known = set(names)
        for spec in specs:
            for dep in spec.requires:
                if dep not in known:
                    raise ConfigError(f"gate {spec.name!r} requires unknown gate {dep!r}")
                if dep == spec.name:
                    raise ConfigError(f"gate {spec.name!r} requires itself")

        # Kahn's algorithm; ties resolved by declaration order.
        in_degree = {s.name: len(set(s.requires)) for s in specs}
        dependents: dict[str, list[str]] = {name: [] for name in names}
        for spec in specs:
            for dep in set(spec.requires):
                dependents[dep].append(spec.name)

        ready = [name for name in names if in_degree[name] == 0]
        order: list[str] = []
        while ready:
            current = ready.pop(0)
            order.append(current)
            for child in dependents[current]:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    ready.append(child)
            ready.sort(key=names.index)

        if len(order) != len(names):
            cyclic = sorted(name for name, degree in in_degree.items() if degree > 0)
            raise ConfigError(f"gate dependency cycle among: {', '.join(cyclic)}")

        return cls(tuple(specs), tuple(order))

    @property
    def specs(self) -> tuple[GateSpec, ...]:
        """Specs in declaration order (the order verdicts are reported in)."""
        return self._specs

    @property
    def order(self) -> tuple[str, ...]:
        """A topological execution order."""
        return self._order

    def __getitem__(self, name: str) -> GateSpec:
        return self._by_name[name]

    def __len__(self) -> int:
        return len(self._specs)


class GateRunner:
    """Run every gate of a :class:`GateGraph` over one change.

    Gates whose prerequisites have finished run concurrently, at most
    *max_concurrency* at a time.  A gate whose prerequisite did not PASS is
    not executed; it is reported as ERROR with a ``prerequisite-failed``
    finding so that every configured gate appears in the report.
    Advisory prerequisites are waited for but never cause a skip.
    """

    def __init__(self, *, max_concurrency: int = 4) -> None:
        if max_concurrency < 1:
            msg = "max_concurrency must be at least 1"
            raise ValueError(msg)
        self._max_concurrency = max_concurrency

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    async def run(self, change: ChangeDescriptor, graph: GateGraph) -> Report:
        """Execute all gates and return the frozen report.

        Cancelling this coroutine cancels every outstanding gate.
        """
        started_at = datetime.now(UTC)
        semaphore = asyncio.Semaphore(self._max_concurrency)
        tasks: dict[str, asyncio.Task[Verdict]] = {}

        async def run_one(spec: GateSpec) -> Verdict:
            upstream = [await tasks[dep] for dep in spec.requires]
            # Advisory prerequisites only annotate; their result never skips a dependent.
            failed = [v.gate for v in upstream if not v.passed and not graph[v.gate].advisory]
            if failed:
                logger.info("Skipping gate %s: prerequisite(s) %s did not pass", spec.name, ", ".join(failed))
                return _skipped(spec.name, failed)
            async with semaphore:
                return await self._execute(spec, change)

        with _tracer.start_as_current_span("gates.run") as span:
            span.set_attribute(ATTR_ENVIRONMENT, change.environment)
            span.set_attribute(ATTR_FINGERPRINT, change.fingerprint)
            span.set_attribute(ATTR_GATE_COUNT, len(graph))

            for name in graph.order:
                tasks[name] = asyncio.create_task(run_one(graph[name]), name=f"gate:{name}")
            try:
                await asyncio.gather(*tasks.values())
            finally:
                for task in tasks.values():
                    if not task.done():
                        task.cancel()

        verdicts = tuple(
            tasks[spec.name].result().model_copy(update={"advisory": spec.advisory})
            for spec in graph.specs
        )
        return Report(
            change=change,
            verdicts=verdicts,
            started_at=started_at,
            finished_at=datetime.now(UTC),
        )

    @staticmethod
    async def _execute(spec: GateSpec, change: ChangeDescriptor) -> Verdict:
        """Run one gate; anything other than a clean verdict becomes ERROR."""
        try:
            verdict = await asyncio.wait_for(
                spec.gate.run(change, timeout=spec.timeout),
                timeout=spec.timeout + _TIMEOUT_GRACE,
            )
        except TimeoutError:
            return error_verdict(spec.name, "gate-timeout", f"no result within {spec.timeout}s")
        except Exception as exc:
            logger.exception("Gate %s raised instead of returning a verdict", spec.name)
            return error_verdict(spec.name, "gate-crashed", f"{type(exc).__name__}: {exc}")

        if verdict.gate != spec.name:
            verdict = verdict.model_copy(update={"gate": spec.name})
        return verdict


def _skipped(gate: str, failed: list[str]) -> Verdict:
    return Verdict(
        gate=gate,
        outcome=GateOutcome.ERROR,
        findings=(
            Finding(
                severity=Severity.INFO,
                code="prerequisite-failed",
                message=f"skipped: prerequisite failed ({', '.join(failed)})",
            ),
        ),
    )
