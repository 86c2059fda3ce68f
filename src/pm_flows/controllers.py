"""Controllers for the pm-flows CLI commands."""

from __future__ import annotations

import asyncio
import getpass
import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pm_flows.config import Settings
from pm_flows.harness.contracts import load_json
from pm_flows.harness.errors import InvalidArgumentError
from pm_flows.harness.models import BreakpointStatus, ResumeAction, RunStatus, WorkflowResult
from pm_flows.harness.repository import RunRepository
from pm_flows.harness.runner import Breakpoint, Gate, Step
from pm_flows.logging_config import setup_logging
from pm_flows.processes import PROCESSES, get_process
from pm_flows.runtime import open_harness


@dataclass(slots=True)
class RunProcessCommand:
    """CLI input for starting a process run."""

    db_path: Path | None
    process: str
    inputs_path: Path | None
    run_id: str | None
    auto_approve: bool
    agent: str | None
    output_format: str = "text"


@dataclass(slots=True)
class ResumeRunCommand:
    """CLI input for resuming a paused or failed run."""

    db_path: Path | None
    run_id: str
    auto_approve: bool
    agent: str | None
    output_format: str = "text"


@dataclass(slots=True)
class ListRunsCommand:
    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class ShowRunCommand:
    db_path: Path | None
    run_id: str


@dataclass(slots=True)
class ListBreakpointsCommand:
    db_path: Path | None
    run_id: str | None
    pending_only: bool
    limit: int


@dataclass(slots=True)
class ResolveBreakpointCommand:
    """CLI input for approve/abort operator decisions."""

    db_path: Path | None
    breakpoint_id: str
    action: ResumeAction
    note: str | None


@dataclass(slots=True)
class CommandOutcome:
    """Lines to render plus the exit status."""

    lines: list[str]
    success: bool


class ProcessCliController:
    """Coordinates process runs and operator commands."""

    def list_processes(self) -> list[str]:
        lines = []
        for process_id, workflow in sorted(PROCESSES.items()):
            steps = sum(1 for item in workflow.items if isinstance(item, Step))
            breakpoints = sum(1 for item in workflow.items if isinstance(item, Breakpoint))
            gates = sum(1 for item in workflow.items if isinstance(item, Gate)) + sum(
                len(item.gates) for item in workflow.items if isinstance(item, Step)
            )
            lines.append(
                f"{process_id}: steps={steps} breakpoints={breakpoints} gates={gates} "
                f"required_inputs={','.join(workflow.required_inputs) or '-'}",
            )
            if workflow.description:
                lines.append(f"  {workflow.description}")
        return lines

    def run(self, command: RunProcessCommand) -> CommandOutcome:
        settings = _settings(command.db_path)
        try:
            workflow = get_process(command.process)
        except KeyError as error:
            return CommandOutcome(lines=[str(error.args[0])], success=False)
        inputs: dict[str, Any] = {}
        if command.inputs_path is not None:
            try:
                inputs = load_json(command.inputs_path)
            except (TypeError, json.JSONDecodeError) as error:
                return CommandOutcome(lines=[f"Invalid inputs file: {error}"], success=False)

        with open_harness(
            settings,
            auto_approve=command.auto_approve or None,
            agent_override=command.agent,
        ) as harness:
            try:
                result = asyncio.run(harness.runner.run(workflow, inputs, run_id=command.run_id))
            except InvalidArgumentError as error:
                return CommandOutcome(lines=[str(error)], success=False)
        return _render_result(result, command.output_format)

    def resume(self, command: ResumeRunCommand) -> CommandOutcome:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            run = repository.get_run(command.run_id)
        if run is None:
            return CommandOutcome(lines=[f"Run not found: {command.run_id}"], success=False)
        if run.status == RunStatus.SUCCEEDED:
            return CommandOutcome(
                lines=[f"Run {run.run_id} already succeeded; nothing to resume."],
                success=False,
            )

        workflow = get_process(run.process_id)
        with open_harness(
            settings,
            auto_approve=command.auto_approve or None,
            agent_override=command.agent,
        ) as harness:
            result = asyncio.run(harness.runner.run(workflow, run.inputs, run_id=run.run_id))
        return _render_result(result, command.output_format)

    def list_runs(self, command: ListRunsCommand) -> list[str]:
        settings = _settings(command.db_path)
        status = RunStatus(command.status) if command.status else None
        with _repository(settings) as repository:
            runs = repository.list_runs(status=status, limit=command.limit)
        if not runs:
            return ["No runs found."]
        return [
            f"{run.run_id} {run.process_id} status={run.status.value} "
            f"started={run.started_at.isoformat()} reason={run.reason or '-'}"
            for run in runs
        ]

    def show_run(self, command: ShowRunCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            run = repository.get_run(command.run_id)
            breakpoints = repository.list_breakpoints(run_id=command.run_id, limit=200)
        if run is None:
            return [f"Run not found: {command.run_id}"]

        lines = [
            f"Run: {run.run_id}",
            f"Process: {run.process_id}",
            f"Status: {run.status.value}",
            f"Started: {run.started_at.isoformat()}",
            f"Finished: {run.finished_at.isoformat() if run.finished_at else '-'}",
            f"Reason: {run.reason or '-'}",
            f"Task files: {settings.workdir_root / run.run_id / 'tasks'}",
            f"Breakpoints: {len(breakpoints)}",
        ]
        for item in reversed(breakpoints):
            lines.append(
                f"  {item.breakpoint_id} {item.status.value} title={item.title!r} "
                f"note={item.note or '-'}",
            )
        if run.result is not None:
            lines.append("Result:")
            lines.extend(json.dumps(run.result, ensure_ascii=False, indent=2).splitlines())
        return lines

    def list_breakpoints(self, command: ListBreakpointsCommand) -> list[str]:
        settings = _settings(command.db_path)
        status = BreakpointStatus.PENDING if command.pending_only else None
        with _repository(settings) as repository:
            items = repository.list_breakpoints(
                run_id=command.run_id,
                status=status,
                limit=command.limit,
            )
        if not items:
            return ["No breakpoints found."]
        lines = []
        for item in items:
            lines.append(f"{item.breakpoint_id} [{item.status.value}] {item.title}")
            lines.append(f"  question: {item.question}")
            for artifact in item.context.get("files", []):
                lines.append(f"  file: {artifact.get('path')} ({artifact.get('format')})")
        return lines

    def resolve_breakpoint(self, command: ResolveBreakpointCommand) -> CommandOutcome:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            try:
                view = repository.resolve_breakpoint(
                    breakpoint_id=command.breakpoint_id,
                    action=command.action,
                    note=command.note,
                    responder=getpass.getuser(),
                )
            except RuntimeError as error:
                return CommandOutcome(lines=[str(error)], success=False)
        return CommandOutcome(
            lines=[
                f"Breakpoint {view.breakpoint_id} {view.status.value} "
                f"by {view.responder or '-'} (run {view.run_id}).",
            ],
            success=True,
        )


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    setup_logging(settings.logging)
    return settings


@contextmanager
def _repository(settings: Settings) -> Iterator[RunRepository]:
    repository = RunRepository(settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


def _render_result(result: WorkflowResult, output_format: str) -> CommandOutcome:
    if output_format == "json":
        return CommandOutcome(
            lines=[json.dumps(result.to_dict(), ensure_ascii=False, indent=2)],
            success=result.success,
        )

    status = "succeeded" if result.success else "failed"
    lines = [
        f"Run {result.run_id} ({result.process_id}) {status} "
        f"in {result.duration_seconds:.1f}s",
    ]
    if not result.success:
        lines.append(f"Reason: {result.reason}")
        if result.failed_step:
            lines.append(f"Failed at: {result.failed_step}")
        lines.extend(f"  concern: {concern}" for concern in result.concerns)
    lines.append(f"Artifacts: {len(result.artifacts)}")
    lines.extend(
        f"  {artifact.path} ({artifact.format}) {artifact.label or ''}".rstrip()
        for artifact in result.artifacts
    )
    return CommandOutcome(lines=lines, success=result.success)
