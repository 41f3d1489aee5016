"""Gates that run an external scanner through a sandbox.

``CommandGate`` renders a command template against the change, runs it via a
:class:`~dgk.runtime.sandbox.executor.SandboxExecutor` and hands stdout to a
registered parser.  ``SecretScanGate`` additionally refuses to scan a
shallow checkout: secret detection must see the full history of the change.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from dgk.core.errors import GateExecutionError
from dgk.core.models import Severity
from dgk.gates.base import BaseGate
from dgk.gates.parsers import OutputParseError, get_parser
from dgk.gates.severity import SeverityMap
from dgk.runtime.sandbox.models import ExecutionRequest
from dgk.utils.command import render_command

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from dgk.core.models import ChangeDescriptor, Finding
    from dgk.runtime.sandbox.executor import SandboxExecutor

logger = logging.getLogger(__name__)


class CommandGate(BaseGate):
    """Run a scanner command and normalize its output."""

    def __init__(
        self,
        name: str,
        command: Sequence[str],
        *,
        executor: SandboxExecutor,
        tool: str,
        severities: SeverityMap | None = None,
        fail_on: Severity = Severity.LOW,
        env: dict[str, str] | None = None,
    ) -> None:
        super().__init__(name, fail_on=fail_on)
        if not command:
            msg = f"gate {name!r} needs a command"
            raise ValueError(msg)
        self._command = list(command)
        self._executor = executor
        self._tool = tool
        self._parser, default_map = get_parser(tool)
        self._severities = severities or default_map
        self._env = dict(env or {})

    @property
    def tool(self) -> str:
        return self._tool

    @property
    def severities(self) -> SeverityMap:
        return self._severities

    async def inspect(self, change: ChangeDescriptor) -> Sequence[Finding]:
        source = self._require_source(change)
        request = ExecutionRequest(
            command=render_command(self._command, change),
            cwd=source,
            env=self._env,
            metadata={"gate": self.name},
        )
        result = await self._executor.execute(request)

        try:
            findings = self._parser(result.stdout, self._severities)
        except OutputParseError as exc:
            detail = f"{exc} (rc={result.exit_code})"
            if result.stderr:
                detail += f": {result.stderr.strip()[:200]}"
            raise GateExecutionError(self.name, detail, code="unparseable-output") from exc

        if result.exit_code != 0 and not findings:
            raise GateExecutionError(
                self.name,
                f"{self._tool} exited with rc={result.exit_code} but reported no findings",
                code="tool-failed",
            )
        return findings

    def _require_source(self, change: ChangeDescriptor) -> Path:
        if change.source is None:
            raise GateExecutionError(self.name, "change has no source directory", code="no-source")
        return change.source


class SecretScanGate(CommandGate):
    """Secret-detection gate that insists on full VCS history."""

    def __init__(
        self,
        name: str,
        command: Sequence[str],
        *,
        executor: SandboxExecutor,
        tool: str = "gitleaks",
        severities: SeverityMap | None = None,
        fail_on: Severity = Severity.LOW,
        env: dict[str, str] | None = None,
        require_full_history: bool = True,
    ) -> None:
        super().__init__(
            name,
            command,
            executor=executor,
            tool=tool,
            severities=severities,
            fail_on=fail_on,
            env=env,
        )
        self._require_full_history = require_full_history

    async def inspect(self, change: ChangeDescriptor) -> Sequence[Finding]:
        if self._require_full_history:
            await self._check_full_history(change)
        return await super().inspect(change)

    async def _check_full_history(self, change: ChangeDescriptor) -> None:
        source = self._require_source(change)
        result = await self._executor.execute(
            ExecutionRequest(
                command=["git", "rev-parse", "--is-shallow-repository"],
                cwd=source,
                metadata={"gate": self.name, "purpose": "history-check"},
            )
        )
        if result.exit_code != 0:
            raise GateExecutionError(
                self.name,
                f"{source} is not a git checkout; full history is required",
                code="history-unavailable",
            )
        if result.stdout.strip() != "false":
            raise GateExecutionError(
                self.name,
                "shallow clone detected; fetch full history before scanning for secrets",
                code="shallow-history",
            )
        logger.debug("Gate %s: full history available in %s", self.name, source)
