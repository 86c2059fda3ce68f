"""Quarterly roadmap planning with OKR alignment."""

from __future__ import annotations

from typing import Any

from pm_flows.harness.gates import GateSeverity, QualityGate
from pm_flows.harness.runner import Breakpoint, Gate, ResultsView, Step, Workflow
from pm_flows.processes.common import (
    BOOLEAN,
    OBJECTS,
    STRING,
    STRINGS,
    count,
    field_of,
    gather,
    pm_task,
)

PROCESS_ID = "product-management/quarterly-roadmap"

NUMBER = {"type": "number", "minimum": 0}

okr_review = pm_task(
    "okr-review",
    title="Review previous quarter OKRs",
    agent="general-purpose",
    role="product operations lead",
    task="Grade last quarter's objectives and key results and extract lessons learned",
    instructions=[
        "Score each key result from 0.0 to 1.0",
        "Separate what to continue, stop and start",
    ],
    output_format="JSON with reviewComplete, okrScores, lessonsLearned, artifacts",
    required={"reviewComplete": BOOLEAN},
    optional={"okrScores": OBJECTS, "lessonsLearned": STRINGS},
    labels=("roadmap", "okr-review"),
)

market_analysis = pm_task(
    "market-analysis",
    title="Analyze market trends and competition",
    agent="general-purpose",
    role="market analyst",
    task="Summarize market trends, competitor moves and opportunities for the quarter",
    instructions=["Rank opportunities by expected impact"],
    output_format="JSON with trends, competitorMoves, opportunities, artifacts",
    required={"opportunities": OBJECTS},
    optional={"trends": STRINGS, "competitorMoves": STRINGS},
    labels=("roadmap", "market"),
)

theme_identification = pm_task(
    "theme-identification",
    title="Identify strategic themes",
    agent="general-purpose",
    role="head of product",
    task="Derive three to five strategic themes from OKR lessons and market analysis",
    instructions=["Give each theme a rationale and the evidence supporting it"],
    output_format="JSON with themes, artifacts",
    required={"themes": OBJECTS},
    labels=("roadmap", "themes"),
)

initiative_mapping = pm_task(
    "initiative-mapping",
    title="Map initiatives to themes",
    agent="general-purpose",
    role="product manager",
    task="Map candidate initiatives to strategic themes with effort and impact estimates",
    instructions=["Estimate effort in team-weeks"],
    output_format="JSON with initiatives, artifacts",
    required={"initiatives": OBJECTS},
    labels=("roadmap", "initiatives"),
)

capacity_planning = pm_task(
    "capacity-planning",
    title="Plan team capacity",
    agent="general-purpose",
    role="engineering manager",
    task="Allocate team capacity across initiatives as a percentage of the quarter",
    instructions=["Report committed and exploratory capacity separately"],
    output_format="JSON with totalCapacityUsed, committedCapacity, exploratoryCapacity, artifacts",
    required={"totalCapacityUsed": NUMBER},
    optional={"committedCapacity": NUMBER, "exploratoryCapacity": NUMBER},
    labels=("roadmap", "capacity"),
)

okr_definition = pm_task(
    "okr-definition",
    title="Define next quarter OKRs",
    agent="general-purpose",
    role="product strategy lead",
    task="Write objectives and measurable key results for the planned initiatives",
    instructions=["Every objective gets two to four key results"],
    output_format="JSON with objectives, artifacts",
    required={"objectives": OBJECTS},
    labels=("roadmap", "okrs"),
)

roadmap_document = pm_task(
    "roadmap-document-generation",
    title="Generate roadmap document",
    agent="general-purpose",
    role="technical writer",
    task="Produce the quarterly roadmap document with themes, initiatives, OKRs and timeline",
    instructions=["Report the document path as roadmapPath"],
    output_format="JSON with roadmapPath, timeline, artifacts",
    required={"roadmapPath": STRING},
    optional={"timeline": OBJECTS},
    labels=("roadmap", "document"),
)


def _has_previous_okrs(inputs: dict[str, Any], _results: ResultsView) -> bool:
    return bool(inputs.get("previousOKRs"))


def _finalize(inputs: dict[str, Any], results: ResultsView) -> dict[str, Any]:
    return {
        "quarter": inputs["quarter"],
        "roadmap": {"path": results["document"]["roadmapPath"]},
        "themes": results["themes"]["themes"],
        "initiatives": results["initiatives"]["initiatives"],
        "okrAlignment": {"objectives": results["okrs"]["objectives"]},
        "capacity": {"totalCapacityUsed": results["capacity"]["totalCapacityUsed"]},
        "timeline": field_of(results, "document", "timeline", []),
    }


WORKFLOW = Workflow(
    process_id=PROCESS_ID,
    description="Review OKRs, pick themes, map initiatives to capacity and publish a roadmap.",
    input_defaults={
        "previousOKRs": None,
        "customerFeedback": [],
        "marketData": {},
        "teamCapacity": {},
        "outputDir": "roadmap-output",
    },
    required_inputs=("quarter", "productName"),
    items=(
        Step(
            "okr-review",
            okr_review,
            gather("quarter", "productName", "previousOKRs", "outputDir"),
        ),
        Breakpoint(
            "retrospective",
            title="OKR Retrospective Review",
            question="Previous OKR review is incomplete. Review the retrospective before planning?",
            summary=lambda inputs, results: {
                "quarter": inputs["quarter"],
                "lessonsLearned": field_of(results, "okr-review", "lessonsLearned", []),
            },
            when=lambda inputs, results: _has_previous_okrs(inputs, results)
            and not (
                field_of(results, "okr-review", "reviewComplete", False)
                and field_of(results, "okr-review", "lessonsLearned")
            ),
        ),
        Step(
            "market",
            market_analysis,
            gather("quarter", "productName", "marketData", "customerFeedback", "outputDir"),
        ),
        Step(
            "themes",
            theme_identification,
            gather(
                "quarter",
                "productName",
                "outputDir",
                lessons="okr-review.lessonsLearned",
                opportunities="market.opportunities",
            ),
        ),
        Gate(
            "themes-defined",
            "themes",
            QualityGate.non_empty("themes", "themes", reason="Strategic themes not identified"),
        ),
        Breakpoint(
            "themes-review",
            title="Strategic Themes Review",
            question="Review and approve the strategic themes before initiative mapping?",
            summary=lambda inputs, results: {
                "quarter": inputs["quarter"],
                "themesCount": count(results, "themes", "themes"),
            },
        ),
        Step(
            "initiatives",
            initiative_mapping,
            gather("quarter", "outputDir", themes="themes.themes"),
        ),
        Step(
            "capacity",
            capacity_planning,
            gather("quarter", "teamCapacity", "outputDir", initiatives="initiatives.initiatives"),
            gates=(
                QualityGate.at_most(
                    "capacity",
                    "totalCapacityUsed",
                    100,
                    severity=GateSeverity.ADVISORY,
                    reason="Capacity overallocated",
                ),
            ),
        ),
        Step(
            "okrs",
            okr_definition,
            gather(
                "quarter",
                "outputDir",
                themes="themes.themes",
                initiatives="initiatives.initiatives",
            ),
        ),
        Step(
            "document",
            roadmap_document,
            gather(
                "quarter",
                "productName",
                "outputDir",
                themes="themes.themes",
                initiatives="initiatives.initiatives",
                capacity="capacity",
                objectives="okrs.objectives",
            ),
        ),
        Breakpoint(
            "approval",
            title="Quarterly Roadmap Approval",
            question="Approve the quarterly roadmap for communication to stakeholders?",
            summary=lambda inputs, results: {
                "quarter": inputs["quarter"],
                "initiativesCount": count(results, "initiatives", "initiatives"),
                "objectivesCount": count(results, "okrs", "objectives"),
            },
        ),
    ),
    finalize=_finalize,
)
