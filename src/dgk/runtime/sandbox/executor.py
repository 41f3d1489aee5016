"""SandboxExecutor protocol — the common interface for sandbox implementations."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from dgk.runtime.sandbox.models import ExecutionRequest, SandboxConfig, SandboxResult


@runtime_checkable
class SandboxExecutor(Protocol):
    """Executes commands in an isolated environment.

    Implementations must provide ``execute()`` for running commands and
    ``cleanup()`` for releasing resources (e.g. removing containers).
    """

    async def execute(self, request: ExecutionRequest) -> SandboxResult:
        """Run a command in the sandbox and return the result."""
        ...

    async def cleanup(self) -> None:
        """Release any resources held by this executor."""
        ...


def create_sandbox(config: SandboxConfig) -> SandboxExecutor:
    """Build the executor named by ``config.type``."""
    if config.type == "docker":
        from dgk.runtime.sandbox.docker_sandbox import DockerSandbox

        return DockerSandbox(config)

    from dgk.runtime.sandbox.local_sandbox import LocalSandbox

    return LocalSandbox(config)
