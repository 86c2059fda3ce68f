"""Shared test fixtures."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from pm_flows.config import AgentSettings, BreakpointSettings, LoggingSettings, Settings
from pm_flows.harness.backend.echo_agent import build_echo_result
from pm_flows.harness.contracts import TaskStore
from pm_flows.harness.executor import StepExecutor
from pm_flows.harness.runner import WorkflowRunner
from pm_flows.logging_config import LOGGER_NAME

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m pm_flows.harness.backend.echo_agent --task-manifest {{task_manifest}}"
)


class ScriptedAgent:
    """Capability that answers from per-step overrides on top of echo results.

    ``responses`` maps a step key (the part of ``step_id`` after ``NN-``) to a
    dict merged into the echo result, a callable producing the raw payload, or
    an exception instance to raise.
    """

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    @property
    def step_ids(self) -> list[str]:
        return [payload["step_id"] for _, payload in self.calls]

    async def invoke(self, agent_name: str, payload: dict[str, Any]) -> Any:
        self.calls.append((agent_name, payload))
        key = payload["step_id"].split("-", 1)[1]
        response = self.responses.get(key)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(payload)
        result = build_echo_result(payload)
        if isinstance(response, dict):
            result.update(response)
        return result


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "pm-flows.db",
        workdir_root=tmp_path / "runs",
        agents=AgentSettings(default_agent="echo", workdir_root=tmp_path / "agent"),
        breakpoints=BreakpointSettings(poll_interval_seconds=0.05),
        logging=LoggingSettings(log_dir=tmp_path / "logs"),
    )


@pytest.fixture()
def pm_env(tmp_path: Path, monkeypatch) -> Path:
    """Point every ``PM_FLOWS_*`` path at ``tmp_path`` and use the echo agent."""

    monkeypatch.setenv("PM_FLOWS_DB_PATH", str(tmp_path / "pm-flows.db"))
    monkeypatch.setenv("PM_FLOWS_WORKDIR_ROOT", str(tmp_path / "runs"))
    monkeypatch.setenv("PM_FLOWS_AGENT_WORKDIR_ROOT", str(tmp_path / "agent"))
    monkeypatch.setenv("PM_FLOWS_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("PM_FLOWS_DEFAULT_AGENT", "echo")
    monkeypatch.setenv("PM_FLOWS_BREAKPOINT_POLL_SECONDS", "0.05")
    monkeypatch.delenv("PM_FLOWS_AUTO_APPROVE", raising=False)
    monkeypatch.delenv("PM_FLOWS_BREAKPOINT_WEBHOOK_URL", raising=False)
    return tmp_path


@pytest.fixture()
def make_runner(tmp_path: Path) -> Callable[..., WorkflowRunner]:
    def _make(capability, breakpoints, repository=None) -> WorkflowRunner:
        executor = StepExecutor(TaskStore(tmp_path / "runs"), capability)
        return WorkflowRunner(executor, breakpoints, repository=repository)

    return _make


@pytest.fixture(autouse=True)
def _reset_pm_flows_logger():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
