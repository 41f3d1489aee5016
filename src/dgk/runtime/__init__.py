"""Runtime layer — isolated execution of external tools."""

from dgk.runtime.sandbox import (
    DockerSandbox,
    ExecutionRequest,
    LocalSandbox,
    SandboxConfig,
    SandboxExecutor,
    SandboxResult,
    create_sandbox,
)

__all__ = [
    "DockerSandbox",
    "ExecutionRequest",
    "LocalSandbox",
    "SandboxConfig",
    "SandboxExecutor",
    "SandboxResult",
    "create_sandbox",
]
