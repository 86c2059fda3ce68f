"""Product-market fit assessment."""

from __future__ import annotations

from typing import Any

from pm_flows.harness.gates import QualityGate
from pm_flows.harness.runner import Breakpoint, ResultsView, Step, Workflow
from pm_flows.processes.common import (
    BOOLEAN,
    OBJECT,
    OBJECTS,
    SCORE,
    STRING,
    STRINGS,
    field_of,
    flag,
    gather,
    pm_task,
)

PROCESS_ID = "product-management/product-market-fit"

data_validation = pm_task(
    "data-validation",
    title="Validate data completeness for PMF assessment",
    agent="data-validator",
    role="research analyst",
    task="Check that survey, retention and NPS data are sufficient for a PMF assessment",
    instructions=["Set hasAdequateData and list missing data otherwise"],
    output_format="JSON with hasAdequateData, dataQualityScore, missingData, recommendations, "
    "artifacts",
    required={"hasAdequateData": BOOLEAN},
    optional={"dataQualityScore": SCORE, "missingData": STRINGS, "recommendations": STRINGS},
    labels=("pmf", "data"),
)

survey_analysis = pm_task(
    "pmf-survey-analysis",
    title="Analyze PMF survey using the 40% rule",
    agent="pmf-analyst",
    role="product-market fit analyst",
    task="Compute the share of users who would be very disappointed without the product",
    instructions=["Break the share down by segment"],
    output_format="JSON with veryDisappointedPercentage, segments, artifacts",
    required={"veryDisappointedPercentage": SCORE},
    optional={"segments": OBJECTS},
    labels=("pmf", "survey"),
)

retention_metrics = pm_task(
    "retention-metrics-analysis",
    title="Analyze retention and engagement metrics",
    agent="retention-analyst",
    role="retention analyst",
    task="Judge whether the retention curve flattens and at what level",
    instructions=["Report the plateau level as a percentage"],
    output_format="JSON with curveFlattens, plateauRetention, artifacts",
    required={"curveFlattens": BOOLEAN},
    optional={"plateauRetention": SCORE},
    labels=("pmf", "retention"),
)

pmf_scoring = pm_task(
    "pmf-scoring",
    title="Calculate comprehensive PMF score",
    agent="pmf-scorer",
    role="product strategist",
    task="Combine survey, retention and NPS signals into one PMF score",
    instructions=["Set pmfAchieved when the score is at least 70"],
    output_format="JSON with pmfScore, pmfAchieved, componentScores, artifacts",
    required={"pmfScore": SCORE, "pmfAchieved": BOOLEAN},
    optional={"componentScores": OBJECT},
    labels=("pmf", "scoring"),
)

action_plan = pm_task(
    "action-plan-creation",
    title="Create prioritized action plan for PMF improvement",
    agent="action-planner",
    role="product lead",
    task="Turn the PMF findings into a prioritized plan of experiments",
    instructions=["Give every action an owner, a metric and a time frame"],
    output_format="JSON with actions, recommendations, artifacts",
    required={"recommendations": STRINGS},
    optional={"actions": OBJECTS, "reportPath": STRING},
    labels=("pmf", "action-plan"),
)


def _finalize(inputs: dict[str, Any], results: ResultsView) -> dict[str, Any]:
    return {
        "productName": inputs["productName"],
        "pmfScore": results["scoring"]["pmfScore"],
        "pmfAchieved": results["scoring"]["pmfAchieved"],
        "surveyAnalysis": results["survey"],
        "retentionAnalysis": results["retention"],
        "recommendations": field_of(results, "action-plan", "recommendations", []),
    }


WORKFLOW = Workflow(
    process_id=PROCESS_ID,
    description="Validate data, analyze survey and retention signals, and score PMF.",
    input_defaults={
        "productDescription": "",
        "targetMarket": "",
        "userBase": 0,
        "surveyResponses": [],
        "retentionData": {},
        "npsData": {},
        "outputDir": "pmf-output",
        "includeActionPlan": True,
    },
    required_inputs=("productName",),
    items=(
        Step(
            "data",
            data_validation,
            gather(
                "productName",
                "userBase",
                "surveyResponses",
                "retentionData",
                "npsData",
                "outputDir",
            ),
            gates=(
                QualityGate.is_true(
                    "adequate-data",
                    "hasAdequateData",
                    reason="Insufficient data",
                    detail_field="missingData",
                ),
            ),
        ),
        Step(
            "survey",
            survey_analysis,
            gather("productName", "surveyResponses", "outputDir"),
        ),
        Step(
            "retention",
            retention_metrics,
            gather("productName", "retentionData", "outputDir"),
        ),
        Step(
            "scoring",
            pmf_scoring,
            gather(
                "productName",
                "npsData",
                "outputDir",
                survey="survey",
                retention="retention",
            ),
        ),
        Breakpoint(
            "scoring-review",
            title="PMF Score Review",
            question="Review the PMF score before building the action plan?",
            summary=lambda inputs, results: {
                "productName": inputs["productName"],
                "pmfScore": field_of(results, "scoring", "pmfScore"),
                "pmfAchieved": field_of(results, "scoring", "pmfAchieved"),
            },
        ),
        Step(
            "action-plan",
            action_plan,
            gather("productName", "outputDir", scoring="scoring"),
            when=flag("includeActionPlan"),
        ),
    ),
    finalize=_finalize,
)
