"""Accepted-risk data model.

An accepted risk (an "exception" in review vocabulary) is plain data: a
finding code, the scope it applies to, a justification and an optional
expiry.  It lives in YAML next to the pipeline configuration so it can be
audited without reading any pipeline logic.
"""

from __future__ import annotations

import fnmatch
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dgk.core.models import ChangeDescriptor  # noqa: TC001


class ExceptionScope(BaseModel):
    """Which changes an accepted risk applies to.

    Every list holds Unix-style glob patterns (``fnmatch``).  An empty
    ``fingerprints`` or ``gates`` list means "any".
    """

    model_config = ConfigDict(frozen=True)

    environments: tuple[str, ...] = Field(default=("*",), description="Environment patterns.")
    fingerprints: tuple[str, ...] = Field(default=(), description="Change fingerprint patterns.")
    gates: tuple[str, ...] = Field(default=(), description="Gate name patterns.")

    @field_validator("environments")
    @classmethod
    def _non_empty(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            msg = "scope.environments must not be empty (use ['*'] for all)"
            raise ValueError(msg)
        return value

    def covers(self, change: ChangeDescriptor, gate: str) -> bool:
        if not _any_match(self.environments, change.environment):
            return False
        if self.fingerprints and not _any_match(self.fingerprints, change.fingerprint):
            return False
        return not self.gates or _any_match(self.gates, gate)


class AcceptedRisk(BaseModel):
    """A pre-approved, scoped, expirable acceptance of one finding code."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(..., description="Finding code this acceptance applies to.")
    scope: ExceptionScope = Field(default_factory=ExceptionScope)
    justification: str = Field(..., min_length=1, description="Why the risk is accepted.")
    expires_at: datetime | None = Field(default=None, description="Acceptance lapses at this instant.")
    id: str = Field(default="", description="Stable identifier for audit records.")
    owner: str = Field(default="", description="Who approved the acceptance.")

    @field_validator("expires_at")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        # Naive timestamps in YAML are read as UTC.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def ref(self) -> str:
        """The id, or a readable stand-in when none was given."""
        if self.id:
            return self.id
        return f"{self.code}[{','.join(self.scope.environments)}]"

    def is_expired(self, now: datetime) -> bool:
        """Exactly-at-expiry counts as expired."""
        return self.expires_at is not None and now >= self.expires_at

    def matches(self, code: str, change: ChangeDescriptor, gate: str) -> bool:
        return self.code == code and self.scope.covers(change, gate)


def _any_match(patterns: tuple[str, ...], value: str) -> bool:
    return any(fnmatch.fnmatchcase(value, pattern) for pattern in patterns)
