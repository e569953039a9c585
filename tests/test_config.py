"""Tests for environment-driven configuration."""

import pytest
from pydantic import ValidationError

from blockflow.engine import InterpreterConfig
from blockflow.engine.config import DEFAULT_MAX_STEPS, env_int
from blockflow.engine.sandbox import SandboxPolicy


class TestEnvInt:
    def test_unset_uses_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("BLOCKFLOW_TEST_INT", raising=False)
        assert env_int("BLOCKFLOW_TEST_INT", 7, 1, 10) == 7

    def test_blank_uses_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOCKFLOW_TEST_INT", "  ")
        assert env_int("BLOCKFLOW_TEST_INT", 7, 1, 10) == 7

    @pytest.mark.parametrize(("raw", "expected"), [("5", 5), ("0", 1), ("99", 10), ("-3", 1)])
    def test_clamped(self, monkeypatch: pytest.MonkeyPatch, raw: str, expected: int) -> None:
        monkeypatch.setenv("BLOCKFLOW_TEST_INT", raw)
        assert env_int("BLOCKFLOW_TEST_INT", 7, 1, 10) == expected

    def test_invalid_uses_default(
        self, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        monkeypatch.setenv("BLOCKFLOW_TEST_INT", "lots")
        assert env_int("BLOCKFLOW_TEST_INT", 7, 1, 10) == 7
        assert "Invalid BLOCKFLOW_TEST_INT='lots'" in caplog.text


class TestInterpreterConfig:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("BLOCKFLOW_MAX_STEPS", raising=False)
        monkeypatch.delenv("BLOCKFLOW_MAX_DURATION_MS", raising=False)
        config = InterpreterConfig.from_env()
        assert config.max_steps == DEFAULT_MAX_STEPS
        assert config.max_duration_ms == 300_000
        assert config.goto_type == "goto"
        assert config.ui_type_prefix == "ui_"

    def test_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOCKFLOW_MAX_STEPS", "25")
        monkeypatch.setenv("BLOCKFLOW_MAX_DURATION_MS", "999999999999")
        config = InterpreterConfig.from_env()
        assert config.max_steps == 25
        assert config.max_duration_ms == 86_400_000


class TestSandboxPolicy:
    @pytest.mark.parametrize(
        ("requested", "expected"),
        [(None, 10_000), (500, 500), (1, 10), (10**9, 30_000), ("250", 250), ("soon", 10_000)],
    )
    def test_clamp_timeout(self, requested: object, expected: int) -> None:
        assert SandboxPolicy().clamp_timeout(requested) == expected

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOCKFLOW_SANDBOX_MAX_TIMEOUT_MS", "60000")
        monkeypatch.setenv("BLOCKFLOW_SANDBOX_ALLOWED_HOSTS", " Api.Internal , ,localhost")
        policy = SandboxPolicy.from_env()
        assert policy.max_timeout_ms == 60_000
        assert policy.allowed_hosts == ("api.internal", "localhost")

    def test_from_env_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("BLOCKFLOW_SANDBOX_MAX_TIMEOUT_MS", raising=False)
        monkeypatch.delenv("BLOCKFLOW_SANDBOX_ALLOWED_HOSTS", raising=False)
        policy = SandboxPolicy.from_env()
        assert policy.max_timeout_ms == 30_000
        assert policy.allowed_hosts == ()

    def test_policy_is_frozen(self) -> None:
        policy = SandboxPolicy()
        with pytest.raises(ValidationError):
            policy.allowed_hosts = ("127.0.0.1",)
        assert not hasattr(policy.allowed_hosts, "append")
