from __future__ import annotations

import asyncio

import allure
import pytest

from pm_flows.harness.backend.echo_agent import EchoAgent
from pm_flows.harness.breakpoints import AutoApproveBreakpoints
from pm_flows.processes import PROCESSES, get_process
from pm_flows.processes import (
    feature_definition_prd,
    product_council_review,
    product_market_fit,
    quarterly_roadmap,
    retention_cohort_analysis,
    user_story_mapping,
)

from conftest import ScriptedAgent

pytestmark = [
    allure.epic("Processes"),
    allure.feature("Product Management Workflows"),
]

MINIMAL_INPUTS = {
    feature_definition_prd.PROCESS_ID: {"featureName": "Bulk export"},
    quarterly_roadmap.PROCESS_ID: {"quarter": "Q3 2026", "productName": "Atlas"},
    retention_cohort_analysis.PROCESS_ID: {"productName": "Atlas"},
    user_story_mapping.PROCESS_ID: {"productName": "Atlas", "productGoal": "Self-serve onboarding"},
    product_market_fit.PROCESS_ID: {"productName": "Atlas"},
    product_council_review.PROCESS_ID: {"organizationName": "Acme"},
}


def test_registry_lists_six_processes() -> None:
    assert set(PROCESSES) == set(MINIMAL_INPUTS)
    assert get_process("quarterly-roadmap") is quarterly_roadmap.WORKFLOW
    with pytest.raises(KeyError, match="Unknown process"):
        get_process("nope")


@pytest.mark.parametrize("process_id", sorted(MINIMAL_INPUTS))
def test_process_succeeds_with_echo_agent(make_runner, process_id: str) -> None:
    agent = EchoAgent()
    runner = make_runner(agent, AutoApproveBreakpoints())

    result = asyncio.run(runner.run(get_process(process_id), MINIMAL_INPUTS[process_id]))

    assert result.success, result.reason
    assert len(result.artifacts) == len(agent.calls)
    payload = result.to_dict()
    assert payload["metadata"]["process_id"] == process_id


def test_prd_result_fields_and_breakpoints(make_runner) -> None:
    controller = AutoApproveBreakpoints()
    runner = make_runner(EchoAgent(), controller)

    result = asyncio.run(
        runner.run(feature_definition_prd.WORKFLOW, {"featureName": "Bulk export"}, run_id="prd"),
    )

    payload = result.to_dict()
    assert payload["featureName"] == "Bulk export"
    assert payload["prdDocument"] == "echo prdPath"
    assert payload["qualityScore"] == 100
    assert payload["technicalSpecs"] == {"components": 1}
    assert [item.breakpoint_id for item in controller.requests] == [
        "prd:05-stories-review",
        "prd:10-final-approval",
    ]


def test_prd_optional_items_follow_flags(make_runner) -> None:
    agent = EchoAgent()
    controller = AutoApproveBreakpoints()
    inputs = {
        "featureName": "Bulk export",
        "includeTechnicalSpecs": False,
        "requireApproval": False,
    }

    runner = make_runner(agent, controller)

    result = asyncio.run(runner.run(feature_definition_prd.WORKFLOW, inputs))

    assert result.success
    assert "06-specs" not in [payload["step_id"] for _, payload in agent.calls]
    assert result.to_dict()["technicalSpecs"] is None
    assert len(controller.requests) == 1


@pytest.mark.parametrize(
    ("process_id", "step", "response", "reason"),
    [
        (
            feature_definition_prd.PROCESS_ID,
            "problem",
            {"isViable": False, "concerns": ["No clear user"]},
            "Problem statement not viable",
        ),
        (
            retention_cohort_analysis.PROCESS_ID,
            "data",
            {"hasSufficientData": False},
            "Insufficient data for meaningful analysis",
        ),
        (
            user_story_mapping.PROCESS_ID,
            "context",
            {"hasAdequateInformation": False},
            "Insufficient information",
        ),
        (
            product_market_fit.PROCESS_ID,
            "data",
            {"hasAdequateData": False, "missingData": ["NPS responses"]},
            "Insufficient data",
        ),
        (
            quarterly_roadmap.PROCESS_ID,
            "themes",
            {"themes": []},
            "Strategic themes not identified",
        ),
    ],
)
def test_fatal_gates_stop_processes(
    make_runner,
    process_id: str,
    step: str,
    response: dict,
    reason: str,
) -> None:
    agent = ScriptedAgent({step: response})
    runner = make_runner(agent, AutoApproveBreakpoints())

    result = asyncio.run(runner.run(get_process(process_id), MINIMAL_INPUTS[process_id]))

    assert not result.success
    assert result.reason == reason
    assert agent.step_ids[-1].endswith(f"-{step}")


def test_prd_viability_concerns_are_reported(make_runner) -> None:
    agent = ScriptedAgent({"problem": {"isViable": False, "concerns": ["No clear user"]}})

    result = asyncio.run(
        make_runner(agent, AutoApproveBreakpoints()).run(
            feature_definition_prd.WORKFLOW,
            {"featureName": "Bulk export"},
        ),
    )

    assert result.concerns == ["No clear user"]
    assert len(agent.calls) == 1


def test_roadmap_retrospective_opens_for_incomplete_review(make_runner) -> None:
    controller = AutoApproveBreakpoints()
    inputs = {**MINIMAL_INPUTS[quarterly_roadmap.PROCESS_ID], "previousOKRs": {"objectives": []}}

    result = asyncio.run(
        make_runner(EchoAgent(), controller).run(quarterly_roadmap.WORKFLOW, inputs, run_id="q"),
    )

    assert result.success
    assert [item.title for item in controller.requests] == [
        "OKR Retrospective Review",
        "Strategic Themes Review",
        "Quarterly Roadmap Approval",
    ]


def test_roadmap_overallocation_asks_operator(make_runner) -> None:
    controller = AutoApproveBreakpoints()
    agent = ScriptedAgent({"capacity": {"totalCapacityUsed": 130}})

    result = asyncio.run(
        make_runner(agent, controller).run(
            quarterly_roadmap.WORKFLOW,
            MINIMAL_INPUTS[quarterly_roadmap.PROCESS_ID],
            run_id="q",
        ),
    )

    assert result.success
    assert "q:08-capacity-capacity" in [item.breakpoint_id for item in controller.requests]
    assert result.to_dict()["capacity"] == {"totalCapacityUsed": 130}


def test_council_low_validation_score_asks_operator(make_runner) -> None:
    controller = AutoApproveBreakpoints()
    agent = ScriptedAgent({"validation": {"validationScore": 70, "gaps": ["No quorum"]}})

    result = asyncio.run(
        make_runner(agent, controller).run(
            product_council_review.WORKFLOW,
            MINIMAL_INPUTS[product_council_review.PROCESS_ID],
        ),
    )

    assert result.success
    gate_requests = [item for item in controller.requests if item.title.startswith("Quality gate")]
    assert len(gate_requests) == 1
    assert gate_requests[0].summary["concerns"] == ["No quorum"]
