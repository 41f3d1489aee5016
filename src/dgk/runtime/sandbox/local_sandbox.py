"""LocalSandbox — executes commands directly on the host.

Suitable for CI runners that are themselves ephemeral.  It provides no
isolation, so it logs a warning when constructed.
"""

from __future__ import annotations

import asyncio
import logging
import os

from dgk.core.errors import SandboxError, SandboxTimeoutError
from dgk.runtime.sandbox.models import ExecutionRequest, SandboxConfig, SandboxResult

logger = logging.getLogger(__name__)

_WARNING_MSG = (
    "LocalSandbox executes commands directly on the host with NO isolation. "
    "Use DockerSandbox when the runner is not ephemeral."
)


class LocalSandbox:
    """Host-local command executor (no isolation).

    Satisfies the :class:`~dgk.runtime.sandbox.executor.SandboxExecutor`
    protocol.
    """

    def __init__(self, config: SandboxConfig | None = None) -> None:
        self._config = config or SandboxConfig()
        logger.warning(_WARNING_MSG)

    async def execute(self, request: ExecutionRequest) -> SandboxResult:
        """Run a command on the host."""
        logger.debug("LocalSandbox: executing %s", request.command)

        timeout = request.timeout or self._config.timeout
        base_env = dict(os.environ) if self._config.inherit_env else {}
        env = {**base_env, **self._config.env, **request.env}

        try:
            proc = await asyncio.create_subprocess_exec(
                *request.command,
                stdin=asyncio.subprocess.PIPE if request.stdin else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=request.cwd,
                env=env,
            )
        except OSError as exc:
            raise SandboxError(str(exc)) from exc

        stdin_bytes = request.stdin.encode() if request.stdin else None
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(input=stdin_bytes),
                timeout=timeout,
            )
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise SandboxTimeoutError(timeout)
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        return SandboxResult(
            exit_code=proc.returncode or 0,
            stdout=stdout.decode(errors="replace") if stdout else "",
            stderr=stderr.decode(errors="replace") if stderr else "",
        )

    async def cleanup(self) -> None:
        """No-op — nothing to clean up for host execution."""
