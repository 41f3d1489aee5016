"""Credential data models.

Identifiers are validated types, never assembled by string concatenation:
a role must be exactly one well-formed role ARN, and scopes name their
environments explicitly.  :class:`Credential` refuses every form of
serialization so it cannot end up in a log line, an audit record or a
cache file.
"""

from __future__ import annotations

import re
from datetime import datetime  # noqa: TC003
from typing import Any, NoReturn

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_serializer

from dgk.core.models import validate_environment

_ROLE_RE = re.compile(r"^arn:[a-z0-9-]+:iam::\d{12}:role/[A-Za-z0-9+=,.@_/-]{1,512}$")


def validate_role(value: str) -> str:
    """Return *value* if it is a single well-formed IAM role ARN."""
    if not _ROLE_RE.match(value):
        msg = f"invalid role identifier: {value!r}"
        raise ValueError(msg)
    return value


class CredentialScope(BaseModel):
    """What a credential may touch: a role, for a set of environments."""

    model_config = ConfigDict(frozen=True)

    environments: frozenset[str]
    role: str

    @field_validator("environments")
    @classmethod
    def _check_environments(cls, value: frozenset[str]) -> frozenset[str]:
        for env in value:
            validate_environment(env)
        return value

    @field_validator("role")
    @classmethod
    def _check_role(cls, value: str) -> str:
        return validate_role(value)

    @classmethod
    def for_environment(cls, environment: str, role: str) -> CredentialScope:
        return cls(environments=frozenset({environment}), role=role)

    def within(self, requested: CredentialScope) -> bool:
        """True if this scope is no broader than *requested*."""
        return self.role == requested.role and self.environments <= requested.environments

    def describe(self) -> str:
        return f"{self.role} for {'+'.join(sorted(self.environments))}"


class TrustAssertion(BaseModel):
    """Proof of the caller's identity, presented to the trust provider."""

    model_config = ConfigDict(frozen=True)

    token: SecretStr
    subject: str = ""
    audience: str = ""


class IssuedCredential(BaseModel):
    """What a trust provider hands back, before the broker has verified it."""

    model_config = ConfigDict(frozen=True)

    token: SecretStr
    scope: CredentialScope
    expires_at: datetime


class Credential(BaseModel):
    """Verified, short-lived, scope-limited authorization for one apply."""

    model_config = ConfigDict(frozen=True)

    token: SecretStr = Field(repr=False)
    scope: CredentialScope
    issued_at: datetime
    expires_at: datetime

    def secret(self) -> str:
        """The raw token.  Hand it only to the process that performs the apply."""
        return self.token.get_secret_value()

    @model_serializer
    def _refuse(self) -> dict[str, Any]:
        # Reached when a credential is nested inside another model.
        msg = "Credential values are never serialized"
        raise TypeError(msg)

    def model_dump(self, *args: Any, **kwargs: Any) -> NoReturn:  # type: ignore[override]
        msg = "Credential values are never serialized"
        raise TypeError(msg)

    def model_dump_json(self, *args: Any, **kwargs: Any) -> NoReturn:  # type: ignore[override]
        msg = "Credential values are never serialized"
        raise TypeError(msg)

    def __getstate__(self) -> NoReturn:
        msg = "Credential values are never pickled"
        raise TypeError(msg)
