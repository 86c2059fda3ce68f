"""Workflow runner: sequential steps, breakpoints and quality gates."""

from __future__ import annotations

import copy
import json
import logging
import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from pm_flows.harness.breakpoints import BreakpointController
from pm_flows.harness.errors import (
    AbortedAtBreakpoint,
    AgentInvocationError,
    InvalidArgumentError,
    SchemaViolationError,
)
from pm_flows.harness.executor import StepExecutor
from pm_flows.harness.gates import GateOutcome, QualityGate, evaluate_gate
from pm_flows.harness.models import (
    Artifact,
    BreakpointRequest,
    RunStatus,
    StepResult,
    WorkflowResult,
)
from pm_flows.harness.repository import RunRepository
from pm_flows.harness.storage import utc_now
from pm_flows.harness.tasks import TaskContext, TaskDefinition

logger = logging.getLogger(__name__)

Inputs = Mapping[str, Any]


class ResultsView(Mapping[str, dict[str, Any]]):
    """Read-only view of the results of steps that have already completed.

    Lookups return copies; recorded results never change after validation.
    """

    def __init__(self, results: Mapping[str, StepResult]) -> None:
        self._results = results

    def __getitem__(self, key: str) -> dict[str, Any]:
        try:
            return copy.deepcopy(self._results[key].value)
        except KeyError:
            raise KeyError(f"Step {key!r} has not run") from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)


ArgsBuilder = Callable[[Inputs, ResultsView], Mapping[str, Any]]
Predicate = Callable[[Inputs, ResultsView], bool]
SummaryBuilder = Callable[[Inputs, ResultsView], dict[str, Any]]


@dataclass(frozen=True, slots=True)
class Step:
    """Agent step. ``fallback`` replaces the result when the agent fails."""

    key: str
    task: TaskDefinition
    args: ArgsBuilder
    when: Predicate | None = None
    fallback: Callable[[Inputs, ResultsView], dict[str, Any]] | None = None
    gates: tuple[QualityGate, ...] = ()


@dataclass(frozen=True, slots=True)
class Breakpoint:
    """Human approval point. ``files`` defaults to every artifact collected so far."""

    key: str
    title: str
    question: str
    summary: SummaryBuilder | None = None
    files: Callable[[Run], Sequence[Artifact]] | None = None
    when: Predicate | None = None


@dataclass(frozen=True, slots=True)
class Gate:
    """Quality gate placed between steps, checked against an earlier step's result."""

    key: str
    step: str
    gate: QualityGate


WorkflowItem = Step | Breakpoint | Gate


@dataclass(frozen=True, slots=True)
class Workflow:
    process_id: str
    items: tuple[WorkflowItem, ...]
    finalize: Callable[[Inputs, ResultsView], dict[str, Any]] | None = None
    description: str = ""
    input_defaults: dict[str, Any] = field(default_factory=dict)
    required_inputs: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        seen: set[str] = set()
        step_keys: set[str] = set()
        for item in self.items:
            if item.key in seen:
                raise ValueError(f"Duplicate workflow item key {item.key!r} in {self.process_id}")
            seen.add(item.key)
            if isinstance(item, Step):
                step_keys.add(item.key)
            if isinstance(item, Gate) and item.step not in step_keys:
                raise ValueError(
                    f"Gate {item.key!r} references {item.step!r}, which is not an earlier step",
                )


@dataclass(slots=True)
class Run:
    """Mutable state of one workflow invocation."""

    run_id: str
    process_id: str
    started_at: datetime = field(default_factory=utc_now)
    status: RunStatus = RunStatus.PENDING
    results: dict[str, StepResult] = field(default_factory=dict)
    artifacts: list[Artifact] = field(default_factory=list)
    reason: str | None = None

    @classmethod
    def new(cls, process_id: str, run_id: str | None = None) -> Run:
        return cls(run_id=run_id or str(uuid4()), process_id=process_id)

    def record(self, key: str, result: StepResult) -> None:
        """Append a step result; results and artifacts are never replaced."""

        if key in self.results:
            raise ValueError(f"Step {key!r} already recorded for run {self.run_id}")
        self.results[key] = result
        self.artifacts.extend(result.artifacts)

    def view(self) -> ResultsView:
        return ResultsView(self.results)


@dataclass(slots=True)
class _Failure:
    reason: str
    failed_step: str
    concerns: list[Any] = field(default_factory=list)


def step_id_for(position: int, key: str) -> str:
    return f"{position:02d}-{key}"


class WorkflowRunner:
    """Drive a :class:`Workflow` to a :class:`WorkflowResult`.

    Run states move ``pending -> running -> (paused <-> running) ->
    succeeded | failed`` and are mirrored to the repository when one is set.
    """

    def __init__(
        self,
        executor: StepExecutor,
        breakpoints: BreakpointController,
        repository: RunRepository | None = None,
    ) -> None:
        self.executor = executor
        self.breakpoints = breakpoints
        self.repository = repository

    async def run(
        self,
        workflow: Workflow,
        inputs: Inputs,
        *,
        run_id: str | None = None,
    ) -> WorkflowResult:
        return await self.execute(workflow, inputs, run=Run.new(workflow.process_id, run_id))

    async def execute(
        self,
        workflow: Workflow,
        inputs: Inputs,
        *,
        run: Run | None = None,
    ) -> WorkflowResult:
        run = run or Run.new(workflow.process_id)
        snapshot = _resolve_inputs(workflow, inputs)
        started = time.monotonic()
        self._start(run, snapshot)

        try:
            failure = await self._walk(workflow, snapshot, run)
            fields: dict[str, Any] = {}
            if failure is None and workflow.finalize is not None:
                fields = workflow.finalize(snapshot, run.view())
        except Exception as error:
            self._finish(run, RunStatus.FAILED, reason=str(error) or type(error).__name__)
            raise

        duration = time.monotonic() - started
        if failure is not None:
            result = WorkflowResult(
                success=False,
                process_id=workflow.process_id,
                run_id=run.run_id,
                started_at=run.started_at,
                duration_seconds=duration,
                artifacts=list(run.artifacts),
                reason=failure.reason,
                concerns=failure.concerns,
                failed_step=failure.failed_step,
            )
            self._finish(run, RunStatus.FAILED, reason=failure.reason, result=result)
            return result

        result = WorkflowResult(
            success=True,
            process_id=workflow.process_id,
            run_id=run.run_id,
            started_at=run.started_at,
            duration_seconds=duration,
            artifacts=list(run.artifacts),
            fields=fields,
        )
        self._finish(run, RunStatus.SUCCEEDED, result=result)
        return result

    async def _walk(self, workflow: Workflow, inputs: Inputs, run: Run) -> _Failure | None:
        for position, item in enumerate(workflow.items, start=1):
            try:
                if isinstance(item, Step):
                    failure = await self._run_step(item, position, inputs, run)
                elif isinstance(item, Breakpoint):
                    failure = await self._open_breakpoint(item, position, inputs, run)
                else:
                    failure = await self._check_gate(item, position, run)
            except AbortedAtBreakpoint as error:
                return _Failure(
                    reason=str(error),
                    failed_step=item.key,
                    concerns=[error.note] if error.note else [],
                )
            if failure is not None:
                return failure
        return None

    async def _run_step(
        self,
        step: Step,
        position: int,
        inputs: Inputs,
        run: Run,
    ) -> _Failure | None:
        view = run.view()
        if step.when is not None and not step.when(inputs, view):
            logger.info("Skipping step: run_id=%s step=%s", run.run_id, step.key)
            return None

        step_id = step_id_for(position, step.key)
        ctx = TaskContext(run_id=run.run_id, step_id=step_id)
        descriptor = step.task(step.args(inputs, view), ctx)
        try:
            result = await self.executor.run_step(descriptor, run)
        except (SchemaViolationError, AgentInvocationError) as error:
            if step.fallback is None:
                return _Failure(
                    reason=str(error),
                    failed_step=step.key,
                    concerns=_violation_concerns(error),
                )
            logger.warning(
                "Using fallback result: run_id=%s step_id=%s error=%s",
                run.run_id,
                step_id,
                error,
            )
            try:
                result = self.executor.record_result(
                    descriptor,
                    run,
                    step.fallback(inputs, view),
                )
            except SchemaViolationError as fallback_error:
                return _Failure(
                    reason=f"Fallback result rejected: {fallback_error}",
                    failed_step=step.key,
                    concerns=_violation_concerns(fallback_error),
                )

        run.record(step.key, result)
        logger.info(
            "Step completed: run_id=%s step_id=%s replayed=%s artifacts=%d",
            run.run_id,
            step_id,
            result.replayed,
            len(result.artifacts),
        )
        for gate in step.gates:
            outcome = evaluate_gate(gate, result.value)
            failure = await self._apply_gate(outcome, position, step.key, run)
            if failure is not None:
                return failure
        return None

    async def _check_gate(self, item: Gate, position: int, run: Run) -> _Failure | None:
        result = run.results.get(item.step)
        if result is None:
            logger.info(
                "Skipping gate on step that did not run: run_id=%s gate=%s step=%s",
                run.run_id,
                item.key,
                item.step,
            )
            return None
        outcome = evaluate_gate(item.gate, result.value)
        return await self._apply_gate(outcome, position, item.key, run)

    async def _apply_gate(
        self,
        outcome: GateOutcome,
        position: int,
        key: str,
        run: Run,
    ) -> _Failure | None:
        if outcome.passed:
            return None
        gate = outcome.gate
        logger.warning(
            "Quality gate failed: run_id=%s gate=%s check=%r observed=%r severity=%s",
            run.run_id,
            gate.name,
            gate.describe(),
            outcome.observed,
            gate.severity.value,
        )
        if gate.fatal:
            return _Failure(reason=outcome.reason, failed_step=key, concerns=list(outcome.concerns))

        request = BreakpointRequest(
            breakpoint_id=f"{run.run_id}:{step_id_for(position, key)}-{gate.name}",
            run_id=run.run_id,
            title=f"Quality gate: {gate.name}",
            question=(
                f"{outcome.reason}: expected {gate.describe()}, observed {outcome.observed!r}. "
                "Continue anyway?"
            ),
            summary=outcome.summary(),
            files=tuple(run.artifacts),
        )
        await self._pause(run, request)
        return None

    async def _open_breakpoint(
        self,
        item: Breakpoint,
        position: int,
        inputs: Inputs,
        run: Run,
    ) -> _Failure | None:
        view = run.view()
        if item.when is not None and not item.when(inputs, view):
            logger.info("Skipping breakpoint: run_id=%s breakpoint=%s", run.run_id, item.key)
            return None
        files = item.files(run) if item.files is not None else run.artifacts
        request = BreakpointRequest(
            breakpoint_id=f"{run.run_id}:{step_id_for(position, item.key)}",
            run_id=run.run_id,
            title=item.title,
            question=item.question,
            summary=item.summary(inputs, view) if item.summary is not None else {},
            files=tuple(files),
        )
        await self._pause(run, request)
        return None

    async def _pause(self, run: Run, request: BreakpointRequest) -> None:
        self._transition(run, RunStatus.PAUSED)
        signal = await self.breakpoints.pause(request)
        if not signal.approved:
            logger.warning(
                "Run aborted at breakpoint: run_id=%s breakpoint_id=%s note=%r",
                run.run_id,
                request.breakpoint_id,
                signal.note,
            )
            raise AbortedAtBreakpoint(request.breakpoint_id, request.title, signal.note)
        logger.info(
            "Breakpoint approved: run_id=%s breakpoint_id=%s",
            run.run_id,
            request.breakpoint_id,
        )
        self._transition(run, RunStatus.RUNNING)

    def _start(self, run: Run, inputs: dict[str, Any]) -> None:
        if run.status.is_terminal:
            raise RuntimeError(f"Run {run.run_id} already finished with status={run.status.value}")
        run.status = RunStatus.RUNNING
        logger.info("Run started: run_id=%s process_id=%s", run.run_id, run.process_id)
        if self.repository is not None:
            self.repository.start_run(
                run_id=run.run_id,
                process_id=run.process_id,
                inputs=inputs,
                started_at=run.started_at,
            )

    def _transition(self, run: Run, status: RunStatus) -> None:
        run.status = status
        if self.repository is not None:
            self.repository.set_run_status(run_id=run.run_id, status=status)

    def _finish(
        self,
        run: Run,
        status: RunStatus,
        *,
        reason: str | None = None,
        result: WorkflowResult | None = None,
    ) -> None:
        run.status = status
        run.reason = reason
        logger.info(
            "Run finished: run_id=%s process_id=%s status=%s reason=%s",
            run.run_id,
            run.process_id,
            status.value,
            reason,
        )
        if self.repository is not None:
            self.repository.set_run_status(
                run_id=run.run_id,
                status=status,
                reason=reason,
                result=result.to_dict() if result is not None else None,
            )


def _resolve_inputs(workflow: Workflow, inputs: Inputs) -> dict[str, Any]:
    if not isinstance(inputs, Mapping):
        raise InvalidArgumentError(
            workflow.process_id,
            f"inputs must be a mapping, got {type(inputs).__name__}",
        )
    try:
        resolved = json.loads(json.dumps({**workflow.input_defaults, **inputs}, allow_nan=False))
    except (TypeError, ValueError) as error:
        raise InvalidArgumentError(
            workflow.process_id,
            f"inputs are not JSON-serializable: {error}",
        ) from error
    missing = [key for key in workflow.required_inputs if key not in resolved]
    if missing:
        raise InvalidArgumentError(
            workflow.process_id,
            f"missing required inputs: {', '.join(missing)}",
        )
    return resolved


def _violation_concerns(error: Exception) -> list[str]:
    if isinstance(error, SchemaViolationError):
        return [f"{item.path}: {item.message}" for item in error.violations]
    return []
