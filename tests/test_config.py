from __future__ import annotations

from pathlib import Path

import allure
import pytest

from pm_flows.config import DEFAULT_CODEX_COMMAND_TEMPLATE, Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Settings"),
]

_ENV_KEYS = (
    "PM_FLOWS_DB_PATH",
    "PM_FLOWS_WORKDIR_ROOT",
    "PM_FLOWS_DEFAULT_AGENT",
    "PM_FLOWS_AGENT_TIMEOUT_SECONDS",
    "PM_FLOWS_AGENT_PROFILE_MAP",
    "PM_FLOWS_AUTO_APPROVE",
    "PM_FLOWS_BREAKPOINT_WEBHOOK_URL",
    "PM_FLOWS_LOG_LEVEL",
    "PM_FLOWS_CODEX_COMMAND_TEMPLATE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_from_env_defaults() -> None:
    settings = Settings.from_env()

    assert settings.db_path == Path(".pm_flows.db")
    assert settings.workdir_root == Path(".pm_flows/runs")
    assert settings.agents.default_agent == "claude"
    assert settings.agents.timeout_seconds == 900
    assert settings.agents.codex_command_template == DEFAULT_CODEX_COMMAND_TEMPLATE
    assert settings.breakpoints.auto_approve is False
    assert settings.breakpoints.webhook_url is None
    assert settings.logging.level == "INFO"
    settings.validate()


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PM_FLOWS_WORKDIR_ROOT", str(tmp_path / "runs"))
    monkeypatch.setenv("PM_FLOWS_DEFAULT_AGENT", " Codex ")
    monkeypatch.setenv("PM_FLOWS_AGENT_PROFILE_MAP", "metrics-analyst:fast, prd-writer:quality")
    monkeypatch.setenv("PM_FLOWS_AUTO_APPROVE", "yes")
    monkeypatch.setenv("PM_FLOWS_BREAKPOINT_WEBHOOK_URL", "https://hooks.example.com/pm")
    monkeypatch.setenv("PM_FLOWS_LOG_LEVEL", "debug")

    settings = Settings.from_env(db_path=tmp_path / "custom.db")

    assert settings.db_path == tmp_path / "custom.db"
    assert settings.workdir_root == tmp_path / "runs"
    assert settings.agents.default_agent == "codex"
    assert settings.agents.agent_profile_map == {
        "metrics-analyst": "fast",
        "prd-writer": "quality",
    }
    assert settings.breakpoints.auto_approve is True
    assert settings.breakpoints.webhook_url == "https://hooks.example.com/pm"
    assert settings.logging.level == "DEBUG"
    settings.validate()


def test_from_env_rejects_bad_profile_map(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PM_FLOWS_AGENT_PROFILE_MAP", "metrics-analyst=fast")

    with pytest.raises(ValueError, match="Expected format"):
        Settings.from_env()


def test_from_env_rejects_bad_boolean(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PM_FLOWS_AUTO_APPROVE", "sometimes")

    with pytest.raises(ValueError, match="Invalid boolean value"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("key", "value", "message"),
    [
        ("PM_FLOWS_DEFAULT_AGENT", "copilot", "PM_FLOWS_DEFAULT_AGENT"),
        ("PM_FLOWS_AGENT_TIMEOUT_SECONDS", "0", "TIMEOUT"),
        ("PM_FLOWS_BREAKPOINT_WEBHOOK_URL", "hooks.example.com", "WEBHOOK_URL"),
        ("PM_FLOWS_LOG_LEVEL", "chatty", "PM_FLOWS_LOG_LEVEL"),
    ],
)
def test_validate_rejects_unusable_values(
    monkeypatch: pytest.MonkeyPatch,
    key: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(key, value)

    with pytest.raises(ValueError, match=message):
        Settings.from_env().validate()
