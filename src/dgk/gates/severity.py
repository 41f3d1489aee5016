"""Severity normalization tables.

Each scanner speaks its own severity vocabulary.  A :class:`SeverityMap`
translates it onto the fixed five-level :class:`~dgk.core.models.Severity`
scale.  Maps are adapter configuration: the defaults below can be replaced
or extended per gate from the pipeline YAML.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from dgk.core.models import Severity


class SeverityMap(BaseModel):
    """Tool vocabulary → :class:`Severity`, with a fallback for unknown terms."""

    mapping: dict[str, Severity] = Field(default_factory=dict)
    default: Severity = Field(default=Severity.MEDIUM, description="Severity for unmapped or missing terms.")

    @field_validator("mapping", mode="before")
    @classmethod
    def _normalize_keys(cls, value: object) -> object:
        if isinstance(value, dict):
            return {str(k).strip().lower(): Severity.parse(v) for k, v in value.items()}
        return value

    def resolve(self, term: str | None) -> Severity:
        if term is None:
            return self.default
        return self.mapping.get(term.strip().lower(), self.default)

    def merged(self, overrides: dict[str, Severity]) -> SeverityMap:
        """Return a copy with *overrides* layered on top."""
        return SeverityMap(mapping={**self.mapping, **overrides}, default=self.default)


TFLINT_SEVERITIES = SeverityMap(
    mapping={"error": Severity.HIGH, "warning": Severity.MEDIUM, "notice": Severity.LOW},
    default=Severity.MEDIUM,
)

CHECKOV_SEVERITIES = SeverityMap(
    mapping={
        "critical": Severity.CRITICAL,
        "high": Severity.HIGH,
        "medium": Severity.MEDIUM,
        "low": Severity.LOW,
        "info": Severity.INFO,
    },
    # checkov leaves severity empty without a platform key
    default=Severity.HIGH,
)

# gitleaks reports rule ids rather than severities; every leak is critical
# unless a rule is explicitly downgraded.
GITLEAKS_SEVERITIES = SeverityMap(default=Severity.CRITICAL)

SARIF_SEVERITIES = SeverityMap(
    mapping={"error": Severity.HIGH, "warning": Severity.MEDIUM, "note": Severity.LOW, "none": Severity.INFO},
    default=Severity.MEDIUM,
)
