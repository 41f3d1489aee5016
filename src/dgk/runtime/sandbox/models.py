"""Data models for the sandbox subsystem."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field


class SandboxConfig(BaseModel):
    """Configuration for a sandbox executor."""

    type: Literal["local", "docker"] = Field(default="local", description="Which executor to build.")
    timeout: float = Field(default=300.0, description="Max execution time in seconds.")
    inherit_env: bool = Field(default=True, description="Start from the host environment (local only).")
    memory_limit: str = Field(default="1g", description="Memory limit (Docker format, e.g. '512m').")
    cpu_limit: float = Field(default=1.0, description="CPU quota (number of cores).")
    network_enabled: bool = Field(default=False, description="Allow network access inside the sandbox.")
    image: str = Field(default="alpine:3.20", description="Docker image to use.")
    workdir: str = Field(default="/workspace", description="Mount point of the change inside the container.")
    read_only: bool = Field(default=True, description="Mount the root filesystem as read-only.")
    env: dict[str, str] = Field(default_factory=dict, description="Environment variables to inject.")


class ExecutionRequest(BaseModel):
    """A request to execute a command inside a sandbox."""

    command: list[str] = Field(..., description="Command and arguments to execute.")
    cwd: Path | None = Field(default=None, description="Host directory to run in (mounted for Docker).")
    stdin: str | None = Field(default=None, description="Optional stdin input.")
    timeout: float | None = Field(default=None, description="Per-request timeout override.")
    env: dict[str, str] = Field(
        default_factory=dict,
        repr=False,
        description="Extra env vars for this request. May hold credentials; never logged.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict, description="Arbitrary metadata.")


class SandboxResult(BaseModel):
    """Result of a sandboxed execution."""

    exit_code: int = Field(..., description="Process exit code.")
    stdout: str = Field(default="", description="Captured stdout.")
    stderr: str = Field(default="", description="Captured stderr.")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Arbitrary metadata.")

    @property
    def ok(self) -> bool:
        return self.exit_code == 0
