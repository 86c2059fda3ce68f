"""Agent capability interface consumed by the step executor."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol


class AgentCapability(Protocol):
    """Opaque, potentially slow and costly agent runtime.

    Implementations perform exactly one invocation per call and never retry
    on the caller's behalf.
    """

    async def invoke(self, agent_name: str, payload: dict[str, Any]) -> Any:
        """Run the named agent and return its JSON output (decoded or raw text)."""


@dataclass(slots=True)
class BackendRunRequest:
    """Inputs required to execute one CLI agent subprocess."""

    manifest_path: Path
    timeout_seconds: int
    agent: str
    profile: str
    model: str
    command_template: str
    shutdown_requested: Callable[[], bool] | None = None
    graceful_shutdown_seconds: int | None = None


@dataclass(slots=True)
class BackendRunResult:
    """Execution outcome from backend runner."""

    exit_code: int
    timed_out: bool
    stdout_path: Path
    stderr_path: Path
