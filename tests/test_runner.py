from __future__ import annotations

import asyncio
import json
from pathlib import Path

import allure
import pytest

from pm_flows.harness.breakpoints import AutoApproveBreakpoints, InMemoryBreakpointController
from pm_flows.harness.contracts import TaskStore
from pm_flows.harness.errors import InvalidArgumentError
from pm_flows.harness.executor import StepExecutor
from pm_flows.harness.gates import GateSeverity, QualityGate
from pm_flows.harness.models import ResumeAction, RunStatus, StepResult
from pm_flows.harness.repository import RunRepository
from pm_flows.harness.runner import (
    Breakpoint,
    Gate,
    ResultsView,
    Run,
    Step,
    Workflow,
    WorkflowRunner,
    step_id_for,
)
from pm_flows.harness.storage import utc_now
from pm_flows.processes.common import BOOLEAN, SCORE, STRINGS, gather, pm_task

from conftest import ScriptedAgent

pytestmark = [
    allure.epic("Harness"),
    allure.feature("Workflow Runner"),
]

ANALYZE = pm_task(
    "analyze",
    title="Analyze",
    agent="analyst",
    role="analyst",
    task="Analyze the input",
    instructions=[],
    output_format="JSON",
    required={"score": SCORE, "ok": BOOLEAN},
    optional={"concerns": STRINGS},
)
DRAFT = pm_task(
    "draft",
    title="Draft",
    agent="writer",
    role="writer",
    task="Draft a document",
    instructions=[],
    output_format="JSON",
    required={"ok": BOOLEAN},
)
ASSEMBLE = pm_task(
    "assemble",
    title="Assemble",
    agent="writer",
    role="writer",
    task="Assemble the final document",
    instructions=[],
    output_format="JSON",
    required={"ok": BOOLEAN},
)


def _linear_workflow() -> Workflow:
    return Workflow(
        process_id="test/linear",
        required_inputs=("topic",),
        items=(
            Step(
                "analyze",
                ANALYZE,
                gather("topic"),
                gates=(QualityGate.at_least("score", "score", 40),),
            ),
            Step("draft", DRAFT, gather("topic", analysis="analyze.score")),
            Step(
                "review",
                ANALYZE,
                gather("topic"),
                gates=(
                    QualityGate.is_true(
                        "review-ok",
                        "ok",
                        reason="Review rejected the draft",
                        detail_field="concerns",
                    ),
                ),
            ),
            Step("assemble", ASSEMBLE, gather("topic")),
        ),
        finalize=lambda inputs, results: {
            "topic": inputs["topic"],
            "ok": results["assemble"]["ok"],
        },
    )


def test_successful_run_collects_artifacts_and_fields(make_runner) -> None:
    agent = ScriptedAgent()
    runner = make_runner(agent, AutoApproveBreakpoints())

    result = asyncio.run(runner.run(_linear_workflow(), {"topic": "exports"}, run_id="run-1"))

    assert result.success
    assert agent.step_ids == ["01-analyze", "02-draft", "03-review", "04-assemble"]
    assert [item.path for item in result.artifacts] == [
        "artifacts/01-analyze.md",
        "artifacts/02-draft.md",
        "artifacts/03-review.md",
        "artifacts/04-assemble.md",
    ]
    payload = result.to_dict()
    assert payload["topic"] == "exports"
    assert payload["ok"] is True
    assert payload["metadata"]["run_id"] == "run-1"
    assert payload["metadata"]["process_id"] == "test/linear"
    assert "reason" not in payload


def test_fatal_gate_at_third_step_stops_after_three_invocations(make_runner) -> None:
    agent = ScriptedAgent({"review": {"ok": False, "concerns": ["Missing personas"]}})
    runner = make_runner(agent, AutoApproveBreakpoints())

    result = asyncio.run(runner.run(_linear_workflow(), {"topic": "exports"}))

    assert len(agent.calls) == 3
    assert not result.success
    assert result.reason == "Review rejected the draft"
    assert result.concerns == ["Missing personas"]
    assert result.failed_step == "review"
    assert len(result.artifacts) == 3


def test_score_below_threshold_uses_default_reason(make_runner) -> None:
    agent = ScriptedAgent({"analyze": {"score": 35}})
    runner = make_runner(agent, AutoApproveBreakpoints())

    result = asyncio.run(runner.run(_linear_workflow(), {"topic": "exports"}))

    assert not result.success
    assert result.reason == "Quality gate failed"
    assert "04-assemble" not in agent.step_ids
    assert agent.step_ids == ["01-analyze"]


def test_standalone_gate_item_checks_earlier_step(make_runner) -> None:
    workflow = Workflow(
        process_id="test/gate-item",
        items=(
            Step("analyze", ANALYZE, gather()),
            Gate("analysis-ok", "analyze", QualityGate.at_least("score", "score", 90)),
            Step("assemble", ASSEMBLE, gather()),
        ),
    )
    agent = ScriptedAgent({"analyze": {"score": 50}})

    result = asyncio.run(make_runner(agent, AutoApproveBreakpoints()).run(workflow, {}))

    assert not result.success
    assert result.failed_step == "analysis-ok"
    assert agent.step_ids == ["01-analyze"]


def _reviewed_workflow() -> Workflow:
    return Workflow(
        process_id="test/reviewed",
        items=(
            Step("analyze", ANALYZE, gather()),
            Breakpoint(
                "review",
                title="Analysis Review",
                question="Continue to assembly?",
                summary=lambda _inputs, results: {"score": results["analyze"]["score"]},
            ),
            Step("assemble", ASSEMBLE, gather()),
        ),
    )


def test_unresolved_breakpoint_leaves_run_paused(make_runner, tmp_path: Path) -> None:
    repository = RunRepository(tmp_path / "runs.db")
    repository.init_schema()
    controller = InMemoryBreakpointController()
    agent = ScriptedAgent()
    runner = make_runner(agent, controller, repository=repository)

    try:
        with pytest.raises(TimeoutError):
            asyncio.run(
                asyncio.wait_for(
                    runner.run(_reviewed_workflow(), {}, run_id="run-paused"),
                    timeout=0.2,
                ),
            )
        stored = repository.get_run("run-paused")
    finally:
        repository.close()

    assert stored is not None
    assert stored.status == RunStatus.PAUSED
    assert agent.step_ids == ["01-analyze"]
    request = controller.requests[0]
    assert request.breakpoint_id == "run-paused:02-review"
    assert request.summary == {"score": 100}
    assert [item.path for item in request.files] == ["artifacts/01-analyze.md"]


def _run_with_decision(make_runner, action: ResumeAction, note: str | None = None):
    controller = InMemoryBreakpointController()
    agent = ScriptedAgent()
    runner = make_runner(agent, controller)

    async def scenario():
        task = asyncio.create_task(runner.run(_reviewed_workflow(), {}, run_id="run-1"))
        while not controller.pending:
            await asyncio.sleep(0.01)
        controller.resolve("run-1:02-review", action, note=note)
        return await task

    return asyncio.run(scenario()), agent


def test_abort_fails_the_run(make_runner) -> None:
    result, agent = _run_with_decision(make_runner, ResumeAction.ABORT, note="wrong scope")

    assert not result.success
    assert result.reason == "Aborted at breakpoint: Analysis Review"
    assert result.failed_step == "review"
    assert result.concerns == ["wrong scope"]
    assert agent.step_ids == ["01-analyze"]


def test_approve_continues_with_next_step(make_runner) -> None:
    result, agent = _run_with_decision(make_runner, ResumeAction.APPROVE)

    assert result.success
    assert agent.step_ids == ["01-analyze", "03-assemble"]


def test_advisory_gate_opens_breakpoint(make_runner) -> None:
    workflow = Workflow(
        process_id="test/advisory",
        items=(
            Step(
                "analyze",
                ANALYZE,
                gather(),
                gates=(
                    QualityGate.at_least(
                        "quality",
                        "score",
                        80,
                        severity=GateSeverity.ADVISORY,
                    ),
                ),
            ),
            Step("assemble", ASSEMBLE, gather()),
        ),
    )
    controller = AutoApproveBreakpoints()
    agent = ScriptedAgent({"analyze": {"score": 60}})

    result = asyncio.run(make_runner(agent, controller).run(workflow, {}, run_id="run-1"))

    assert result.success
    assert [item.breakpoint_id for item in controller.requests] == ["run-1:01-analyze-quality"]
    assert controller.requests[0].summary["observed"] == 60
    assert agent.step_ids == ["01-analyze", "02-assemble"]


def test_resume_replays_completed_steps(make_runner) -> None:
    workflow = _linear_workflow()
    failing = ScriptedAgent({"review": {"ok": "not-a-boolean"}})
    first = asyncio.run(
        make_runner(failing, AutoApproveBreakpoints()).run(workflow, {"topic": "x"}, run_id="r"),
    )
    assert first.failed_step == "review"

    agent = ScriptedAgent()
    result = asyncio.run(
        make_runner(agent, AutoApproveBreakpoints()).run(workflow, {"topic": "x"}, run_id="r"),
    )

    assert result.success
    assert agent.step_ids == ["03-review", "04-assemble"]


def test_schema_violation_fails_run_with_violations(make_runner) -> None:
    agent = ScriptedAgent({"draft": {"ok": "maybe"}})

    result = asyncio.run(
        make_runner(agent, AutoApproveBreakpoints()).run(_linear_workflow(), {"topic": "x"}),
    )

    assert not result.success
    assert result.failed_step == "draft"
    assert result.concerns == ["$.ok: 'maybe' is not of type 'boolean'"]
    assert len(result.artifacts) == 1


def test_fallback_replaces_failed_step(make_runner) -> None:
    workflow = Workflow(
        process_id="test/fallback",
        items=(
            Step(
                "analyze",
                ANALYZE,
                gather(),
                fallback=lambda _inputs, _results: {"score": 50, "ok": True, "artifacts": []},
            ),
            Step("assemble", ASSEMBLE, gather(score="analyze.score")),
        ),
    )
    agent = ScriptedAgent({"analyze": TimeoutError("agent timed out")})

    result = asyncio.run(make_runner(agent, AutoApproveBreakpoints()).run(workflow, {}))

    assert result.success
    assert agent.calls[1][1]["prompt"]["context"] == {"score": 50}


def test_skipped_steps_keep_positions(make_runner) -> None:
    workflow = Workflow(
        process_id="test/when",
        items=(
            Step("analyze", ANALYZE, gather(), when=lambda inputs, _results: False),
            Step("assemble", ASSEMBLE, gather()),
        ),
    )
    agent = ScriptedAgent()

    asyncio.run(make_runner(agent, AutoApproveBreakpoints()).run(workflow, {}))

    assert agent.step_ids == ["02-assemble"]


def test_missing_required_input_raises(make_runner) -> None:
    runner = make_runner(ScriptedAgent(), AutoApproveBreakpoints())

    with pytest.raises(InvalidArgumentError, match="missing required inputs: topic"):
        asyncio.run(runner.run(_linear_workflow(), {}))


def test_invalid_step_args_propagate_and_mark_run_failed(make_runner, tmp_path: Path) -> None:
    repository = RunRepository(tmp_path / "runs.db")
    repository.init_schema()
    workflow = Workflow(
        process_id="test/bad-args",
        items=(Step("analyze", ANALYZE, lambda _inputs, _results: {"when": object()}),),
    )
    runner = make_runner(ScriptedAgent(), AutoApproveBreakpoints(), repository=repository)

    try:
        with pytest.raises(InvalidArgumentError):
            asyncio.run(runner.run(workflow, {}, run_id="bad"))
        stored = repository.get_run("bad")
    finally:
        repository.close()

    assert stored is not None
    assert stored.status == RunStatus.FAILED


def test_results_view_names_missing_step() -> None:
    view = ResultsView({})

    with pytest.raises(KeyError, match="Step 'metrics' has not run"):
        view["metrics"]
    assert view.get("metrics") is None


def test_run_record_is_append_only() -> None:
    run = Run.new("test/x", run_id="r")
    result = StepResult(step_id="01-a", task_name="a", value={})
    run.record("a", result)

    with pytest.raises(ValueError, match="already recorded"):
        run.record("a", result)
    assert run.started_at <= utc_now()


def test_workflow_rejects_duplicate_keys_and_forward_gates() -> None:
    with pytest.raises(ValueError, match="Duplicate"):
        Workflow(
            process_id="x",
            items=(Step("a", DRAFT, gather()), Step("a", DRAFT, gather())),
        )
    with pytest.raises(ValueError, match="not an earlier step"):
        Workflow(
            process_id="x",
            items=(Gate("g", "a", QualityGate.is_true("ok", "ok")), Step("a", DRAFT, gather())),
        )


def test_step_id_format() -> None:
    assert step_id_for(3, "stories") == "03-stories"
    assert step_id_for(12, "quality") == "12-quality"


def test_gate_between_collect_and_assemble_stops_on_low_score(make_runner) -> None:
    collect = pm_task(
        "collect",
        title="Collect",
        agent="collector",
        role="researcher",
        task="Collect evidence",
        instructions=[],
        output_format="JSON",
        required={"score": SCORE},
    )
    workflow = Workflow(
        process_id="test/collect-assemble",
        items=(
            Step("collect", collect, gather("x")),
            Gate("collect-score", "collect", QualityGate.at_least("score", "score", 40)),
            Step("assemble", ASSEMBLE, gather("x", score="collect.score")),
        ),
    )
    agent = ScriptedAgent({"collect": {"score": 35}})

    result = asyncio.run(make_runner(agent, AutoApproveBreakpoints()).run(workflow, {"x": 1}))

    assert not result.success
    assert result.reason == "Quality gate failed"
    assert result.failed_step == "collect-score"
    assert [item.path for item in result.artifacts] == ["artifacts/01-collect.md"]
    assert agent.step_ids == ["01-collect"]


def _fallback_workflow(fallback) -> Workflow:
    return Workflow(
        process_id="test/fallback-resume",
        items=(
            Step("analyze", ANALYZE, gather(), fallback=fallback),
            Step("assemble", ASSEMBLE, gather(score="analyze.score")),
        ),
    )


def test_resume_replays_fallback_result(make_runner, tmp_path: Path) -> None:
    workflow = _fallback_workflow(
        lambda _inputs, _results: {"score": 50, "ok": True, "artifacts": []},
    )
    failing = ScriptedAgent(
        {"analyze": TimeoutError("agent timed out"), "assemble": {"ok": "not-a-boolean"}},
    )
    first = asyncio.run(
        make_runner(failing, AutoApproveBreakpoints()).run(workflow, {}, run_id="r"),
    )
    assert first.failed_step == "assemble"
    stored = json.loads(
        (tmp_path / "runs" / "r" / "tasks" / "01-analyze" / "result.json").read_text("utf-8"),
    )
    assert stored == {"score": 50, "ok": True, "artifacts": []}

    agent = ScriptedAgent()
    result = asyncio.run(make_runner(agent, AutoApproveBreakpoints()).run(workflow, {}, run_id="r"))

    assert result.success
    assert agent.step_ids == ["02-assemble"]
    assert agent.calls[0][1]["prompt"]["context"] == {"score": 50}


def test_non_conforming_fallback_fails_the_step(make_runner, tmp_path: Path) -> None:
    workflow = _fallback_workflow(lambda _inputs, _results: ["not", "an", "object"])
    agent = ScriptedAgent({"analyze": TimeoutError("agent timed out")})

    result = asyncio.run(make_runner(agent, AutoApproveBreakpoints()).run(workflow, {}, run_id="r"))

    assert not result.success
    assert result.failed_step == "analyze"
    assert result.reason.startswith("Fallback result rejected")
    assert agent.step_ids == ["01-analyze"]
    assert not (tmp_path / "runs" / "r" / "tasks" / "01-analyze" / "result.json").exists()


def test_builders_cannot_modify_recorded_results(make_runner) -> None:
    def tamper(_inputs, results) -> dict:
        results["analyze"]["score"] = 0
        results["analyze"]["artifacts"].clear()
        return {}

    workflow = Workflow(
        process_id="test/tamper",
        items=(
            Step("analyze", ANALYZE, gather()),
            Step("assemble", ASSEMBLE, tamper),
        ),
        finalize=lambda _inputs, results: {"score": results["analyze"]["score"]},
    )
    run = Run.new(workflow.process_id, run_id="r")

    result = asyncio.run(
        make_runner(ScriptedAgent(), AutoApproveBreakpoints()).execute(workflow, {}, run=run),
    )

    assert result.fields == {"score": 100}
    assert run.results["analyze"].value["score"] == 100
    assert len(run.results["analyze"].value["artifacts"]) == 1


class _FullDiskStore(TaskStore):
    def write(self, run_id: str, relative_path: str, payload: dict) -> Path:
        raise OSError("No space left on device")


def test_storage_error_marks_run_failed_and_propagates(tmp_path: Path) -> None:
    repository = RunRepository(tmp_path / "runs.db")
    repository.init_schema()
    runner = WorkflowRunner(
        StepExecutor(_FullDiskStore(tmp_path / "runs"), ScriptedAgent()),
        AutoApproveBreakpoints(),
        repository=repository,
    )

    try:
        with pytest.raises(OSError, match="No space left"):
            asyncio.run(runner.run(_fallback_workflow(None), {}, run_id="disk"))
        stored = repository.get_run("disk")
    finally:
        repository.close()

    assert stored is not None
    assert stored.status == RunStatus.FAILED
    assert stored.reason == "No space left on device"
