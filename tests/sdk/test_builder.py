"""Tests for PipelineBuilder wiring and the SDK entry points."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from dgk.core.errors import ConfigError
from dgk.core.models import ChangeDescriptor, PipelineState
from dgk.gates.command import CommandGate, SecretScanGate
from dgk.pipeline.audit import OutcomeLog
from dgk.sdk.runner import PipelineBuilder, check_change, run_pipeline
from tests.helpers import RecordingMutator, StaticGate, finding, make_change

if TYPE_CHECKING:
    from pathlib import Path

_YAML = """\
name: infra-deploy
gates:
  - name: tflint
    tool: tflint
    command: [tflint, --format, json]
  - name: checkov
    tool: checkov
    command: [checkov, -d, ., -o, json]
    requires: [tflint]
  - name: secrets
    tool: gitleaks
    command: [gitleaks, detect, --report-format, json]
environments:
  dev:
    lock_namespace: infra-dev
    role: arn:aws:iam::123456789012:role/deployer
trust_provider:
  type: static
  token: local-token
mutator:
  plan: [terraform, plan]
  apply: [terraform, apply]
audit_log: audit.jsonl
"""

# Gates and mutator that really run on the host, reading a SARIF report
# committed alongside the change.
_HOST_YAML = """\
name: host
gates:
  - name: report
    tool: sarif
    command: [cat, report.sarif]
environments:
  dev:
    lock_namespace: infra-dev
    role: arn:aws:iam::123456789012:role/deployer
trust_provider:
  type: static
  token: local-token
mutator:
  plan: [echo, "Plan: 1 to add, 0 to change, 0 to destroy."]
  apply: [echo, "Apply complete! Resources: 1 added."]
audit_log: audit.jsonl
"""


def sarif(*results: dict) -> str:
    return json.dumps({"version": "2.1.0", "runs": [{"results": list(results)}]})


def write_config(tmp_path: Path, content: str = _YAML) -> Path:
    f = tmp_path / "pipeline.yaml"
    f.write_text(content)
    return f


def fake_gates(**findings: list) -> dict[str, StaticGate]:
    return {name: StaticGate(name, findings.get(name, ())) for name in ("tflint", "checkov", "secrets")}


class TestBuildGraph:
    def test_gates_from_tools(self, tmp_path: Path) -> None:
        builder = PipelineBuilder.from_yaml(write_config(tmp_path))

        assert builder.graph.order == ("tflint", "checkov", "secrets")
        assert type(builder.graph["tflint"].gate) is CommandGate
        assert isinstance(builder.graph["secrets"].gate, SecretScanGate)
        assert builder.graph["checkov"].requires == ("tflint",)

    def test_unknown_tool(self, tmp_path: Path) -> None:
        content = _YAML.replace("tool: tflint", "tool: terrascan")
        with pytest.raises(ConfigError, match="unknown tool 'terrascan'"):
            PipelineBuilder.from_yaml(write_config(tmp_path, content))

    def test_cycle_rejected(self, tmp_path: Path) -> None:
        content = _YAML.replace(
            "    command: [tflint, --format, json]\n",
            "    command: [tflint, --format, json]\n    requires: [checkov]\n",
        )
        with pytest.raises(ConfigError, match="cycle"):
            PipelineBuilder.from_yaml(write_config(tmp_path, content))

    def test_severity_overrides_merge(self, tmp_path: Path) -> None:
        content = _YAML.replace(
            "    requires: [tflint]\n",
            "    requires: [tflint]\n    severity_map: {CKV_AWS_20: critical}\n    default_severity: low\n",
        )
        builder = PipelineBuilder.from_yaml(write_config(tmp_path, content))
        severities = builder.graph["checkov"].gate.severities

        assert severities.resolve("CKV_AWS_20").value == "critical"
        assert severities.resolve("CKV_UNKNOWN").value == "low"

    def test_gate_overrides(self, tmp_path: Path) -> None:
        gates = fake_gates()
        builder = PipelineBuilder.from_yaml(write_config(tmp_path), gates=gates)
        assert builder.graph["secrets"].gate is gates["secrets"]


class TestBuild:
    def test_unknown_environment(self, tmp_path: Path) -> None:
        builder = PipelineBuilder.from_yaml(write_config(tmp_path), gates=fake_gates())
        with pytest.raises(ConfigError, match="not configured"):
            builder.build(make_change("prod"))

    async def test_run_applies_and_audits(self, tmp_path: Path) -> None:
        mutator = RecordingMutator()
        builder = PipelineBuilder.from_yaml(write_config(tmp_path), gates=fake_gates(), mutator=mutator)

        outcome = await builder.build(make_change("dev", source=tmp_path)).run()

        assert outcome.state == PipelineState.SUCCEEDED
        assert mutator.tokens == ["local-token"]
        assert [o.run_id for o in OutcomeLog(tmp_path / "audit.jsonl").read()] == [outcome.run_id]

    async def test_blocked_run_never_mutates(self, tmp_path: Path) -> None:
        mutator = RecordingMutator()
        gates = fake_gates(checkov=[finding("CKV_AWS_20")])
        builder = PipelineBuilder.from_yaml(write_config(tmp_path), gates=gates, mutator=mutator)

        outcome = await builder.build(make_change("dev")).run()

        assert outcome.state == PipelineState.BLOCKED
        assert mutator.plans == 0

    async def test_inline_exception_unblocks(self, tmp_path: Path) -> None:
        content = _YAML + "exceptions:\n  - code: CKV_AWS_20\n    justification: public site\n"
        gates = fake_gates(checkov=[finding("CKV_AWS_20")])
        builder = PipelineBuilder.from_yaml(write_config(tmp_path, content), gates=gates, mutator=RecordingMutator())

        outcome = await builder.build(make_change("dev")).run()
        assert outcome.state == PipelineState.SUCCEEDED

    async def test_check_does_not_mutate(self, tmp_path: Path) -> None:
        mutator = RecordingMutator()
        builder = PipelineBuilder.from_yaml(write_config(tmp_path), gates=fake_gates(), mutator=mutator)

        decision = await builder.check(make_change("dev"))

        assert decision.allowed
        assert mutator.plans == 0
        assert not (tmp_path / "audit.jsonl").exists()


class TestEntryPoints:
    async def test_check_change_blocks_on_report(self, tmp_path: Path) -> None:
        source = tmp_path / "change"
        source.mkdir()
        (source / "report.sarif").write_text(
            sarif({"ruleId": "AVD-AWS-0086", "level": "error", "message": {"text": "public bucket"}})
        )
        config = write_config(tmp_path, _HOST_YAML)

        decision = await check_change(config, ChangeDescriptor.from_directory(source, "dev"))

        assert not decision.allowed
        assert decision.blocking_findings[0].finding.code == "AVD-AWS-0086"

    async def test_run_pipeline_on_host(self, tmp_path: Path) -> None:
        source = tmp_path / "change"
        source.mkdir()
        (source / "report.sarif").write_text(sarif())
        config = write_config(tmp_path, _HOST_YAML)

        outcome = await run_pipeline(config, ChangeDescriptor.from_directory(source, "dev"))

        assert outcome.state == PipelineState.SUCCEEDED
        assert len(OutcomeLog(tmp_path / "audit.jsonl").read()) == 1
