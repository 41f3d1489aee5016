"""Tests for sandbox data models."""

from dgk.runtime.sandbox.models import ExecutionRequest, SandboxConfig, SandboxResult


class TestSandboxConfig:
    def test_defaults(self) -> None:
        cfg = SandboxConfig()
        assert cfg.type == "local"
        assert cfg.timeout == 300.0
        assert cfg.memory_limit == "1g"
        assert cfg.network_enabled is False
        assert cfg.workdir == "/workspace"
        assert cfg.read_only is True
        assert cfg.env == {}

    def test_custom_values(self) -> None:
        cfg = SandboxConfig(type="docker", timeout=60.0, network_enabled=True, image="bridgecrew/checkov:3")
        assert cfg.type == "docker"
        assert cfg.network_enabled is True
        assert cfg.image == "bridgecrew/checkov:3"


class TestExecutionRequest:
    def test_minimal(self) -> None:
        req = ExecutionRequest(command=["echo", "hello"])
        assert req.command == ["echo", "hello"]
        assert req.cwd is None
        assert req.stdin is None
        assert req.env == {}

    def test_env_hidden_from_repr(self) -> None:
        req = ExecutionRequest(command=["terraform", "apply"], env={"DGK_CREDENTIAL_TOKEN": "sts-token-xyz"})
        assert "sts-token-xyz" not in repr(req)


class TestSandboxResult:
    def test_ok(self) -> None:
        assert SandboxResult(exit_code=0, stdout="hello\n").ok
        assert not SandboxResult(exit_code=2).ok
