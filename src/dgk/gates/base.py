"""Gate protocol and the shared timeout/error envelope.

- ``Gate`` — runtime-checkable protocol the runner schedules.
- ``BaseGate`` — turns an ``inspect()`` coroutine into a :class:`Verdict`,
  mapping crashes and timeouts onto ERROR.  A gate never reports PASS
  unless ``inspect()`` returned cleanly.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from dgk.core.errors import GateExecutionError, SandboxError, SandboxTimeoutError
from dgk.core.models import Finding, GateOutcome, Severity, Verdict
from dgk.utils.telemetry import (
    ATTR_FINDING_COUNT,
    ATTR_GATE,
    ATTR_GATE_OUTCOME,
    get_tracer,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from dgk.core.models import ChangeDescriptor

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)


@runtime_checkable
class Gate(Protocol):
    """One independent check over a proposed change. Never mutates the target."""

    @property
    def name(self) -> str: ...

    async def run(self, change: ChangeDescriptor, *, timeout: float) -> Verdict:
        """Inspect *change* within *timeout* seconds and return a verdict."""
        ...


def error_verdict(gate: str, code: str, message: str, *, duration: float = 0.0) -> Verdict:
    """Build an ERROR verdict carrying one synthetic INFO finding."""
    return Verdict(
        gate=gate,
        outcome=GateOutcome.ERROR,
        findings=(Finding(severity=Severity.INFO, code=code, message=message),),
        duration=duration,
    )


class BaseGate(ABC):
    """Base class for gates: subclasses implement :meth:`inspect`.

    The verdict is FAIL when any finding reaches *fail_on* (default LOW, so
    INFO-only results still pass), PASS otherwise.
    """

    def __init__(self, name: str, *, fail_on: Severity = Severity.LOW) -> None:
        self._name = name
        self._fail_on = fail_on

    @property
    def name(self) -> str:
        return self._name

    async def run(self, change: ChangeDescriptor, *, timeout: float) -> Verdict:
        started = time.monotonic()
        with _tracer.start_as_current_span("gate.run") as span:
            span.set_attribute(ATTR_GATE, self._name)
            verdict = await self._guarded(change, timeout, started)
            span.set_attribute(ATTR_GATE_OUTCOME, verdict.outcome.value)
            span.set_attribute(ATTR_FINDING_COUNT, len(verdict.findings))

        logger.debug(
            "Gate %s on %s: %s (%d finding(s), %.2fs)",
            self._name,
            change.short,
            verdict.outcome.value,
            len(verdict.findings),
            verdict.duration,
        )
        return verdict

    async def _guarded(self, change: ChangeDescriptor, timeout: float, started: float) -> Verdict:
        try:
            findings = await asyncio.wait_for(self.inspect(change), timeout=timeout)
        except (TimeoutError, SandboxTimeoutError):
            return error_verdict(
                self._name,
                "gate-timeout",
                f"no result within {timeout}s",
                duration=time.monotonic() - started,
            )
        except GateExecutionError as exc:
            return error_verdict(self._name, exc.code, exc.detail, duration=time.monotonic() - started)
        except SandboxError as exc:
            return error_verdict(self._name, "gate-error", exc.detail, duration=time.monotonic() - started)
        except Exception as exc:
            logger.exception("Gate %s crashed", self._name)
            return error_verdict(
                self._name,
                "gate-crashed",
                f"{type(exc).__name__}: {exc}",
                duration=time.monotonic() - started,
            )

        failed = any(f.severity.at_least(self._fail_on) for f in findings)
        return Verdict(
            gate=self._name,
            outcome=GateOutcome.FAIL if failed else GateOutcome.PASS,
            findings=tuple(findings),
            duration=time.monotonic() - started,
        )

    @abstractmethod
    async def inspect(self, change: ChangeDescriptor) -> Sequence[Finding]:
        """Return the findings for *change*; raise :class:`GateExecutionError` on tool failure."""
        ...
