"""Pydantic models for the pipeline YAML schema consumed by ``dgk run``."""

from __future__ import annotations

from datetime import timedelta
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from dgk.core.models import Severity, validate_environment
from dgk.credentials.models import validate_role
from dgk.policy.models import AcceptedRisk
from dgk.runtime.sandbox.models import SandboxConfig


class TelemetrySettings(BaseModel):
    """Optional telemetry configuration."""

    enabled: bool = False
    console: bool = False
    otlp_endpoint: str | None = None


class GateSettings(BaseModel):
    """One gate: a scanner command and how to read its output."""

    name: str
    tool: str = Field(..., description="Output parser: tflint, checkov, gitleaks or sarif.")
    command: list[str] = Field(..., min_length=1)
    timeout: float = Field(default=300.0, gt=0)
    advisory: bool = False
    requires: list[str] = []
    severity_map: dict[str, Severity] = {}
    default_severity: Severity | None = None
    fail_on: Severity = Severity.LOW
    full_history: bool | None = Field(
        default=None,
        description="Require an unshallow checkout; defaults to true for gitleaks.",
    )
    env: dict[str, str] = {}

    @field_validator("severity_map", mode="before")
    @classmethod
    def _parse_severities(cls, value: object) -> object:
        if isinstance(value, dict):
            return {str(k): Severity.parse(v) for k, v in value.items()}
        return value

    @field_validator("default_severity", "fail_on", mode="before")
    @classmethod
    def _parse_severity(cls, value: object) -> object:
        return Severity.parse(value) if isinstance(value, str) else value

    @property
    def secret_scan(self) -> bool:
        if self.full_history is not None:
            return self.full_history
        return self.tool == "gitleaks"


class EnvironmentSettings(BaseModel):
    """Per-environment target settings."""

    lock_namespace: str
    role: str
    max_credential_lifetime: timedelta = timedelta(hours=1)
    lock_wait: float = Field(default=300.0, gt=0, description="Seconds to wait for a held lock.")
    lock_ttl: timedelta = timedelta(hours=1)

    @field_validator("role")
    @classmethod
    def _check_role(cls, value: str) -> str:
        return validate_role(value)

    @field_validator("max_credential_lifetime", "lock_ttl")
    @classmethod
    def _positive(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            msg = "durations must be positive"
            raise ValueError(msg)
        return value


class TrustProviderSettings(BaseModel):
    """How the broker obtains credentials."""

    type: Literal["static", "http"] = "static"
    endpoint: str | None = None
    token: str | None = Field(default=None, repr=False, description="Static token (development only).")
    assertion_env: str = Field(default="DGK_ID_TOKEN", description="Variable holding the CI identity token.")
    audience: str = ""
    timeout: float = 10.0

    @model_validator(mode="after")
    def _check_type(self) -> TrustProviderSettings:
        if self.type == "http" and not self.endpoint:
            msg = "http trust provider requires 'endpoint'"
            raise ValueError(msg)
        if self.type == "static" and not self.token:
            msg = "static trust provider requires 'token'"
            raise ValueError(msg)
        return self


class MutatorSettings(BaseModel):
    """Plan/apply commands of the declarative tool."""

    plan: list[str] = Field(..., min_length=1)
    apply: list[str] = Field(..., min_length=1)
    credential_env: str = "DGK_CREDENTIAL_TOKEN"
    detailed_exitcode: bool = False
    timeout: float | None = None
    env: dict[str, str] = {}


class PipelineSpec(BaseModel):
    """Top-level pipeline specification parsed from YAML."""

    version: str = "1"
    name: str = ""
    severity_threshold: Severity = Severity.HIGH
    max_concurrency: int = Field(default=4, ge=1)
    gates: list[GateSettings]
    exceptions: list[AcceptedRisk] = []
    exceptions_file: str | None = None
    environments: dict[str, EnvironmentSettings]
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    trust_provider: TrustProviderSettings
    mutator: MutatorSettings
    audit_log: str | None = None
    telemetry: TelemetrySettings | None = None

    @field_validator("severity_threshold", mode="before")
    @classmethod
    def _parse_threshold(cls, value: object) -> object:
        return Severity.parse(value) if isinstance(value, str) else value

    @field_validator("environments")
    @classmethod
    def _check_environments(cls, value: dict[str, EnvironmentSettings]) -> dict[str, EnvironmentSettings]:
        seen: dict[str, str] = {}
        for env, settings in value.items():
            validate_environment(env)
            other = seen.get(settings.lock_namespace)
            if other is not None:
                msg = f"environments '{other}' and '{env}' share lock namespace '{settings.lock_namespace}'"
                raise ValueError(msg)
            seen[settings.lock_namespace] = env
        return value

    @model_validator(mode="after")
    def _check_gates(self) -> PipelineSpec:
        if not self.gates:
            msg = "at least one gate is required"
            raise ValueError(msg)
        names = [gate.name for gate in self.gates]
        for gate in self.gates:
            for dep in gate.requires:
                if dep not in names:
                    msg = f"gate '{gate.name}' requires unknown gate '{dep}'"
                    raise ValueError(msg)
        return self

    def environment(self, name: str) -> EnvironmentSettings:
        try:
            return self.environments[name]
        except KeyError:
            msg = f"environment '{name}' is not configured (known: {', '.join(sorted(self.environments))})"
            raise KeyError(msg) from None
