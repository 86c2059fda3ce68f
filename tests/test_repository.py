from __future__ import annotations

from pathlib import Path

import allure
import pytest

from pm_flows.harness.models import (
    BreakpointRequest,
    BreakpointStatus,
    ResumeAction,
    RunStatus,
)
from pm_flows.harness.repository import RunRepository
from pm_flows.harness.storage import utc_now

pytestmark = [
    allure.epic("Persistence"),
    allure.feature("Run Repository"),
]


@pytest.fixture()
def repository(tmp_path: Path):
    repo = RunRepository(tmp_path / "state" / "runs.db")
    repo.init_schema()
    yield repo
    repo.close()


def _start(repository: RunRepository, run_id: str = "run-1", process_id: str = "pm/x"):
    return repository.start_run(
        run_id=run_id,
        process_id=process_id,
        inputs={"productName": "Atlas"},
        started_at=utc_now(),
    )


def test_run_lifecycle(repository: RunRepository) -> None:
    view = _start(repository)
    assert view.status == RunStatus.RUNNING
    assert view.inputs == {"productName": "Atlas"}

    repository.set_run_status(run_id="run-1", status=RunStatus.PAUSED)
    assert repository.get_run("run-1").status == RunStatus.PAUSED
    assert repository.get_run("run-1").finished_at is None

    repository.set_run_status(
        run_id="run-1",
        status=RunStatus.FAILED,
        reason="Insufficient data",
        result={"success": False},
    )
    failed = repository.get_run("run-1")
    assert failed.status == RunStatus.FAILED
    assert failed.reason == "Insufficient data"
    assert failed.result == {"success": False}
    assert failed.finished_at is not None
    assert failed.started_at.tzinfo is not None


def test_restarting_failed_run_resets_outcome(repository: RunRepository) -> None:
    _start(repository)
    repository.set_run_status(run_id="run-1", status=RunStatus.FAILED, reason="boom")

    restarted = _start(repository)

    assert restarted.status == RunStatus.RUNNING
    assert restarted.reason is None
    assert restarted.finished_at is None


def test_start_run_rejects_succeeded_or_foreign_runs(repository: RunRepository) -> None:
    _start(repository)
    with pytest.raises(RuntimeError, match="belongs to process"):
        _start(repository, process_id="pm/other")

    repository.set_run_status(run_id="run-1", status=RunStatus.SUCCEEDED)
    with pytest.raises(RuntimeError, match="already succeeded"):
        _start(repository)


def test_set_status_of_unknown_run_fails(repository: RunRepository) -> None:
    with pytest.raises(RuntimeError, match="Run not found"):
        repository.set_run_status(run_id="missing", status=RunStatus.FAILED)


def test_list_runs_filters_by_status(repository: RunRepository) -> None:
    _start(repository, "run-1")
    _start(repository, "run-2")
    repository.set_run_status(run_id="run-2", status=RunStatus.SUCCEEDED)

    assert [run.run_id for run in repository.list_runs(status=RunStatus.SUCCEEDED)] == ["run-2"]
    assert {run.run_id for run in repository.list_runs()} == {"run-1", "run-2"}


def _request(breakpoint_id: str = "run-1:03-review") -> BreakpointRequest:
    return BreakpointRequest(
        breakpoint_id=breakpoint_id,
        run_id="run-1",
        title="Review",
        question="Continue?",
        summary={"count": 2},
    )


def test_breakpoint_open_is_idempotent(repository: RunRepository) -> None:
    first = repository.open_breakpoint(_request())
    second = repository.open_breakpoint(_request())

    assert first.status == BreakpointStatus.PENDING
    assert second.created_at == first.created_at
    assert first.context == {"runId": "run-1", "summary": {"count": 2}, "files": []}
    assert first.to_signal() is None


def test_breakpoint_resolution_is_recorded_once(repository: RunRepository) -> None:
    repository.open_breakpoint(_request())

    resolved = repository.resolve_breakpoint(
        breakpoint_id="run-1:03-review",
        action=ResumeAction.ABORT,
        note="needs rework",
        responder="alex",
    )

    assert resolved.status == BreakpointStatus.ABORTED
    assert resolved.responder == "alex"
    assert resolved.resolved_at is not None
    signal = resolved.to_signal()
    assert signal is not None
    assert not signal.approved
    with pytest.raises(RuntimeError, match="already resolved"):
        repository.resolve_breakpoint(breakpoint_id="run-1:03-review", action=ResumeAction.APPROVE)
    with pytest.raises(RuntimeError, match="Breakpoint not found"):
        repository.resolve_breakpoint(breakpoint_id="nope", action=ResumeAction.APPROVE)


def test_list_breakpoints_filters(repository: RunRepository) -> None:
    repository.open_breakpoint(_request("run-1:02-a"))
    repository.open_breakpoint(_request("run-1:04-b"))
    repository.resolve_breakpoint(breakpoint_id="run-1:02-a", action=ResumeAction.APPROVE)

    pending = repository.list_breakpoints(status=BreakpointStatus.PENDING)
    assert [item.breakpoint_id for item in pending] == ["run-1:04-b"]
    assert len(repository.list_breakpoints(run_id="run-1")) == 2
    assert repository.list_breakpoints(run_id="run-2") == []
