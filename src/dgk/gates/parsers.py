"""Scanner output parsers.

Each parser takes a tool's raw stdout plus a :class:`SeverityMap` and
returns normalized findings.  Unparseable output raises
:class:`OutputParseError`; the calling gate turns that into an ERROR verdict
rather than guessing.

Parsers never copy secret material into findings: for secret scanners only
the rule, file, line and commit are kept.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from dgk.core.models import Finding
from dgk.gates.severity import (
    CHECKOV_SEVERITIES,
    GITLEAKS_SEVERITIES,
    SARIF_SEVERITIES,
    TFLINT_SEVERITIES,
    SeverityMap,
)

Parser = Callable[[str, SeverityMap], list[Finding]]


class OutputParseError(ValueError):
    """Tool output could not be interpreted."""


def _load_json(raw: str) -> Any:
    if not raw.strip():
        raise OutputParseError("tool produced no output")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise OutputParseError(f"invalid JSON output: {exc}") from exc


def _location(path: Any, line: Any) -> str | None:
    if not path:
        return None
    return f"{path}:{line}" if line else str(path)


def parse_tflint(raw: str, severities: SeverityMap) -> list[Finding]:
    """Parse ``tflint --format json``."""
    data = _load_json(raw)
    if not isinstance(data, dict):
        raise OutputParseError("tflint output must be an object")

    errors = data.get("errors") or []
    if errors:
        first = errors[0].get("message", "unknown error") if isinstance(errors[0], dict) else errors[0]
        raise OutputParseError(f"tflint reported {len(errors)} error(s): {first}")

    findings: list[Finding] = []
    for issue in data.get("issues") or []:
        rule = issue.get("rule") or {}
        rng = issue.get("range") or {}
        findings.append(
            Finding(
                severity=severities.resolve(rule.get("severity")),
                code=rule.get("name") or "tflint-unknown",
                message=issue.get("message", ""),
                location=_location(rng.get("filename"), (rng.get("start") or {}).get("line")),
            )
        )
    return findings


def parse_checkov(raw: str, severities: SeverityMap) -> list[Finding]:
    """Parse ``checkov -o json`` (single framework object or a list of them)."""
    data = _load_json(raw)
    reports = data if isinstance(data, list) else [data]

    findings: list[Finding] = []
    for report in reports:
        if not isinstance(report, dict):
            raise OutputParseError("checkov report entries must be objects")
        # A summary-only object means nothing was scanned for this framework.
        results = report.get("results") or {}
        for check in results.get("failed_checks") or []:
            line_range = check.get("file_line_range") or []
            resource = check.get("resource")
            message = check.get("check_name", "")
            if resource:
                message = f"{message} ({resource})"
            findings.append(
                Finding(
                    severity=severities.resolve(check.get("severity")),
                    code=check.get("check_id") or "checkov-unknown",
                    message=message,
                    location=_location(check.get("file_path"), line_range[0] if line_range else None),
                )
            )
    return findings


def parse_gitleaks(raw: str, severities: SeverityMap) -> list[Finding]:
    """Parse a gitleaks JSON report.  ``Secret`` and ``Match`` are dropped."""
    data = _load_json(raw)
    if not isinstance(data, list):
        raise OutputParseError("gitleaks report must be a list")

    findings: list[Finding] = []
    for leak in data:
        rule_id = leak.get("RuleID") or "gitleaks-unknown"
        message = leak.get("Description") or rule_id
        commit = leak.get("Commit")
        if commit:
            message = f"{message} (commit {commit[:12]})"
        findings.append(
            Finding(
                severity=severities.resolve(rule_id),
                code=rule_id,
                message=message,
                location=_location(leak.get("File"), leak.get("StartLine")),
            )
        )
    return findings


def parse_sarif(raw: str, severities: SeverityMap) -> list[Finding]:
    """Parse a SARIF 2.1.0 log (any SARIF-emitting scanner)."""
    data = _load_json(raw)
    if not isinstance(data, dict) or "runs" not in data:
        raise OutputParseError("SARIF log must be an object with 'runs'")

    findings: list[Finding] = []
    for run in data["runs"]:
        for result in run.get("results") or []:
            location = None
            locations = result.get("locations") or []
            if locations:
                physical = locations[0].get("physicalLocation") or {}
                location = _location(
                    (physical.get("artifactLocation") or {}).get("uri"),
                    (physical.get("region") or {}).get("startLine"),
                )
            findings.append(
                Finding(
                    severity=severities.resolve(result.get("level", "warning")),
                    code=result.get("ruleId") or "sarif-unknown",
                    message=(result.get("message") or {}).get("text", ""),
                    location=location,
                )
            )
    return findings


PARSERS: dict[str, tuple[Parser, SeverityMap]] = {
    "tflint": (parse_tflint, TFLINT_SEVERITIES),
    "checkov": (parse_checkov, CHECKOV_SEVERITIES),
    "gitleaks": (parse_gitleaks, GITLEAKS_SEVERITIES),
    "sarif": (parse_sarif, SARIF_SEVERITIES),
}


def get_parser(name: str) -> tuple[Parser, SeverityMap]:
    """Return ``(parser, default severity map)`` for a registered tool name."""
    try:
        return PARSERS[name]
    except KeyError:
        known = ", ".join(sorted(PARSERS))
        raise KeyError(f"unknown output parser {name!r} (known: {known})") from None
