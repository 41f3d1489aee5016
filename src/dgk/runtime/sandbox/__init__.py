"""Sandbox subsystem — isolated command execution for scanners and mutators."""

from dgk.runtime.sandbox.docker_sandbox import DockerSandbox
from dgk.runtime.sandbox.executor import SandboxExecutor, create_sandbox
from dgk.runtime.sandbox.local_sandbox import LocalSandbox
from dgk.runtime.sandbox.models import ExecutionRequest, SandboxConfig, SandboxResult

__all__ = [
    "DockerSandbox",
    "ExecutionRequest",
    "LocalSandbox",
    "SandboxConfig",
    "SandboxExecutor",
    "SandboxResult",
    "create_sandbox",
]
