"""Mutator protocol — the declarative tool's plan/apply, consumed opaquely.

``CommandMutator`` drives any plan/apply CLI through a sandbox.  The
credential reaches the child process only through environment variables,
never through arguments, files or logs.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from dgk.core.errors import ApplyFailureError
from dgk.runtime.sandbox.models import ExecutionRequest
from dgk.utils.command import render_command

if TYPE_CHECKING:
    from collections.abc import Sequence

    from dgk.core.models import ChangeDescriptor
    from dgk.credentials.models import Credential
    from dgk.runtime.sandbox.executor import SandboxExecutor
    from dgk.runtime.sandbox.models import SandboxResult

logger = logging.getLogger(__name__)


class ProposedDiff(BaseModel):
    """Opaque plan output; only ``has_changes`` is interpreted."""

    model_config = ConfigDict(frozen=True)

    has_changes: bool = True
    summary: str = ""
    payload: str = Field(default="", repr=False)


@runtime_checkable
class Mutator(Protocol):
    """Computes and applies a change against the target."""

    async def plan(self, change: ChangeDescriptor, *, credential: Credential) -> ProposedDiff:
        """Compute the proposed diff for *change*."""
        ...

    async def apply(self, change: ChangeDescriptor, diff: ProposedDiff, *, credential: Credential) -> str:
        """Apply *diff*; return a short summary or raise :class:`ApplyFailureError`."""
        ...


class CommandMutator:
    """Run configured plan/apply commands in a sandbox.

    Satisfies the :class:`Mutator` protocol.

    With *detailed_exitcode* the plan command follows the common convention
    of exiting 0 for "no changes" and 2 for "changes present"; otherwise
    any successful plan is assumed to carry changes.
    """

    def __init__(
        self,
        plan_command: Sequence[str],
        apply_command: Sequence[str],
        *,
        executor: SandboxExecutor,
        credential_env: str = "DGK_CREDENTIAL_TOKEN",
        detailed_exitcode: bool = False,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self._plan_command = list(plan_command)
        self._apply_command = list(apply_command)
        self._executor = executor
        self._credential_env = credential_env
        self._detailed_exitcode = detailed_exitcode
        self._timeout = timeout
        self._env = dict(env or {})

    async def plan(self, change: ChangeDescriptor, *, credential: Credential) -> ProposedDiff:
        result = await self._run(self._plan_command, change, credential)
        if self._detailed_exitcode and result.exit_code in (0, 2):
            has_changes = result.exit_code == 2
        elif result.exit_code == 0:
            has_changes = True
        else:
            raise ApplyFailureError(f"plan exited with rc={result.exit_code}: {_tail(result)}")

        return ProposedDiff(
            has_changes=has_changes,
            summary=_last_line(result.stdout),
            payload=result.stdout,
        )

    async def apply(self, change: ChangeDescriptor, diff: ProposedDiff, *, credential: Credential) -> str:
        result = await self._run(self._apply_command, change, credential)
        if not result.ok:
            raise ApplyFailureError(f"apply exited with rc={result.exit_code}: {_tail(result)}")
        return _last_line(result.stdout)

    async def _run(self, command: list[str], change: ChangeDescriptor, credential: Credential) -> SandboxResult:
        if change.source is None:
            raise ApplyFailureError("change has no source directory")
        env = {
            **self._env,
            "DGK_ENVIRONMENT": change.environment,
            self._credential_env: credential.secret(),
        }
        return await self._executor.execute(
            ExecutionRequest(
                command=render_command(command, change),
                cwd=change.source,
                env=env,
                timeout=self._timeout,
            )
        )


def _last_line(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if line.strip()]
    return lines[-1].strip() if lines else ""


def _tail(result: SandboxResult, limit: int = 500) -> str:
    text = (result.stderr or result.stdout).strip()
    return text[-limit:]
