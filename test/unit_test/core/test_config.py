"""Unit tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from codeloop_ai.agent_core.schemas import PermissionMode, Verdict
from codeloop_ai.core.config import Settings, get_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    import os

    for key in list(os.environ):
        if key.startswith("CODELOOP_"):
            monkeypatch.delenv(key)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.state_dir == "~/.codeloop"
    assert settings.provider == "pydantic_ai"
    assert settings.max_turns == 50
    assert settings.permission_mode == PermissionMode.default
    assert settings.loop_detection_threshold == 5
    assert settings.retry.max_attempts == 3
    assert settings.openai.base_url == "https://api.openai.com/v1"
    assert settings.logfire.enabled is False


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("CODELOOP_MAX_TURNS", "7")
    monkeypatch.setenv("CODELOOP_PERMISSION_MODE", "auto-edit")
    monkeypatch.setenv("CODELOOP_OPENAI__BASE_URL", "http://localhost:8000/v1")
    monkeypatch.setenv("CODELOOP_RETRY__MAX_ATTEMPTS", "5")
    monkeypatch.setenv("CODELOOP_PERMISSION_RULES", '[{"pattern": "shell.run(git *)", "verdict": "allow"}]')
    monkeypatch.setenv("CODELOOP_BLOCKED_TOOLS", '["shell.run"]')

    settings = Settings(_env_file=None)

    assert settings.max_turns == 7
    assert settings.permission_mode == PermissionMode.auto_edit
    assert settings.openai.base_url == "http://localhost:8000/v1"
    assert settings.retry.max_attempts == 5
    assert settings.permission_rules[0].verdict == Verdict.allow
    assert settings.blocked_tools == ["shell.run"]


def test_dotenv_file(tmp_path, monkeypatch: pytest.MonkeyPatch):
    (tmp_path / ".env").write_text("CODELOOP_MODEL=openai:gpt-4o-mini\nCODELOOP_STREAM=true\n")
    monkeypatch.chdir(tmp_path)
    settings = Settings()
    assert settings.model == "openai:gpt-4o-mini"
    assert settings.stream is True


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, max_turns=0)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, loop_detection_threshold=1)


def test_agent_configuration_snapshot():
    settings = Settings(
        _env_file=None,
        max_turns=9,
        allowed_tools=["file.read"],
        blocked_tools=["shell.run"],
        permission_rules=[{"pattern": "file.read", "verdict": "allow"}],
    )
    config = settings.agent_configuration(model="override-model")

    assert config.max_turns == 9
    assert config.model == "override-model"
    assert config.allowed_tools == frozenset({"file.read"})
    assert config.blocked_tools == frozenset({"shell.run"})
    assert config.rules[0].pattern == "file.read"
    assert config.loop_detection_threshold == 5


def test_get_settings_is_cached():
    assert get_settings() is get_settings()
