"""Domain models for process runs, steps, and breakpoints."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_ARTIFACT_FORMAT = "markdown"


class RunStatus(str, Enum):
    """Run lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED)


class ResumeAction(str, Enum):
    """Operator decisions accepted at a breakpoint."""

    APPROVE = "approve"
    ABORT = "abort"


class BreakpointStatus(str, Enum):
    """Stored breakpoint request states."""

    PENDING = "pending"
    APPROVED = "approved"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class Artifact:
    """Reference to a document produced by a step."""

    path: str
    format: str = DEFAULT_ARTIFACT_FORMAT
    label: str | None = None
    language: str | None = None

    def to_dict(self) -> dict[str, str]:
        payload = {"path": self.path, "format": self.format}
        if self.label is not None:
            payload["label"] = self.label
        if self.language is not None:
            payload["language"] = self.language
        return payload


def parse_artifacts(raw: Any) -> list[Artifact]:
    """Read the ``artifacts`` array declared by an agent result.

    Plain strings are treated as paths. Entries without a path are skipped.
    """

    if not isinstance(raw, list):
        return []
    artifacts: list[Artifact] = []
    for index, item in enumerate(raw):
        if isinstance(item, str) and item.strip():
            artifacts.append(Artifact(path=item.strip()))
            continue
        if not isinstance(item, dict):
            logger.warning("Ignoring artifacts[%d]: expected object or string", index)
            continue
        path = item.get("path")
        if not isinstance(path, str) or not path.strip():
            logger.warning("Ignoring artifacts[%d]: missing path", index)
            continue
        fmt = item.get("format")
        label = item.get("label")
        language = item.get("language")
        artifacts.append(
            Artifact(
                path=path.strip(),
                format=fmt if isinstance(fmt, str) and fmt else DEFAULT_ARTIFACT_FORMAT,
                label=label if isinstance(label, str) else None,
                language=language if isinstance(language, str) else None,
            ),
        )
    return artifacts


@dataclass(slots=True)
class StepResult:
    """Validated agent output for one step."""

    step_id: str
    task_name: str
    value: dict[str, Any]
    artifacts: list[Artifact] = field(default_factory=list)
    replayed: bool = False


@dataclass(frozen=True, slots=True)
class BreakpointRequest:
    """Question presented to a human reviewer before a run may continue."""

    breakpoint_id: str
    run_id: str
    title: str
    question: str
    summary: dict[str, Any] = field(default_factory=dict)
    files: tuple[Artifact, ...] = ()

    def to_notification(self) -> dict[str, Any]:
        """Structured object handed to the operator."""

        return {
            "breakpointId": self.breakpoint_id,
            "title": self.title,
            "question": self.question,
            "context": {
                "runId": self.run_id,
                "summary": self.summary,
                "files": [artifact.to_dict() for artifact in self.files],
            },
        }


@dataclass(frozen=True, slots=True)
class ResumeSignal:
    """Operator decision for one breakpoint."""

    action: ResumeAction
    note: str | None = None
    responder: str | None = None
    resolved_at: datetime | None = None

    @property
    def approved(self) -> bool:
        return self.action == ResumeAction.APPROVE


@dataclass(slots=True)
class WorkflowResult:
    """Final outcome of a process run."""

    success: bool
    process_id: str
    run_id: str
    started_at: datetime
    duration_seconds: float
    artifacts: list[Artifact] = field(default_factory=list)
    fields: dict[str, Any] = field(default_factory=dict)
    reason: str | None = None
    concerns: list[Any] = field(default_factory=list)
    failed_step: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "artifacts": [artifact.to_dict() for artifact in self.artifacts],
            "metadata": {
                "process_id": self.process_id,
                "run_id": self.run_id,
                "timestamp": self.started_at.isoformat(),
                "duration": round(self.duration_seconds, 3),
            },
        }
        if self.success:
            payload.update(self.fields)
        else:
            payload["reason"] = self.reason
            payload["concerns"] = list(self.concerns)
            if self.failed_step is not None:
                payload["failed_step"] = self.failed_step
        return payload
