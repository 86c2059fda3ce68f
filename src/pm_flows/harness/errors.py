"""Error taxonomy for the process harness."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pm_flows.harness.schema import Violation


class HarnessError(RuntimeError):
    """Base class for harness failures."""


class InvalidArgumentError(HarnessError, ValueError):
    """A task factory received a malformed arguments mapping."""

    def __init__(self, task_name: str, message: str) -> None:
        super().__init__(f"Invalid arguments for task {task_name}: {message}")
        self.task_name = task_name


class AgentInvocationError(HarnessError):
    """The agent capability failed or timed out."""

    def __init__(self, message: str, *, agent: str = "", transient: bool = False) -> None:
        super().__init__(message)
        self.agent = agent
        self.transient = transient


class SchemaViolationError(HarnessError):
    """Agent response does not conform to the declared output schema."""

    def __init__(self, step_id: str, violations: Sequence[Violation]) -> None:
        self.step_id = step_id
        self.violations = tuple(violations)
        details = "; ".join(f"{item.path}: {item.message}" for item in self.violations[:5])
        more = len(self.violations) - 5
        if more > 0:
            details += f"; ... {more} more"
        super().__init__(
            f"Step {step_id} output violates schema ({len(self.violations)} violations): {details}",
        )


class AbortedAtBreakpoint(HarnessError):
    """An operator terminated a paused run."""

    def __init__(self, breakpoint_id: str, title: str, note: str | None = None) -> None:
        super().__init__(f"Aborted at breakpoint: {title}")
        self.breakpoint_id = breakpoint_id
        self.title = title
        self.note = note
