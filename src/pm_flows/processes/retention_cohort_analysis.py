"""Retention and cohort analysis."""

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
    count,
    field_of,
    flag,
    gather,
    pm_task,
)

PROCESS_ID = "product-management/retention-cohort-analysis"

data_collection = pm_task(
    "data-collection",
    title="Collect and validate data sources",
    agent="data-engineer",
    role="analytics engineer",
    task="Inventory the event data available for retention analysis and judge its sufficiency",
    instructions=[
        "Check history length, user identifiers and activity events",
        "Set hasSufficientData and list anything missing",
    ],
    output_format="JSON with hasSufficientData, dataQuality, missingData, recommendations, "
    "artifacts",
    required={"hasSufficientData": BOOLEAN},
    optional={"dataQuality": SCORE, "missingData": STRINGS, "recommendations": STRINGS},
    labels=("retention", "data"),
)

cohort_segmentation = pm_task(
    "cohort-segmentation",
    title="Define cohorts and user segments",
    agent="cohort-analyst",
    role="cohort analyst",
    task="Define acquisition and behavioral cohorts for the analysis timeframe",
    instructions=["State the cohort key, granularity and size of every cohort"],
    output_format="JSON with cohorts, segments, artifacts",
    required={"cohorts": OBJECTS},
    optional={"segments": OBJECTS},
    labels=("retention", "cohorts"),
)

retention_calculation = pm_task(
    "retention-calculation",
    title="Calculate retention metrics",
    agent="retention-analyst",
    role="retention analyst",
    task="Compute day 1, 7 and 30 retention per cohort and the overall retention curve",
    instructions=["Use the requested retention metrics when provided"],
    output_format="JSON with retentionByCohort, overallRetention, artifacts",
    required={"retentionByCohort": OBJECTS},
    optional={"overallRetention": OBJECT},
    labels=("retention", "metrics"),
)

churn_analysis = pm_task(
    "churn-analysis",
    title="Analyze churn patterns and risk factors",
    agent="churn-analyst",
    role="churn analyst",
    task="Identify when and why users churn and which signals predict it",
    instructions=["Rank churn reasons by the share of churned users they explain"],
    output_format="JSON with churnRate, churnReasons, riskFactors, artifacts",
    required={"churnReasons": OBJECTS},
    optional={"churnRate": SCORE, "riskFactors": STRINGS},
    labels=("retention", "churn"),
)

engagement_analysis = pm_task(
    "engagement-analysis",
    title="Analyze user engagement patterns",
    agent="engagement-analyst",
    role="engagement analyst",
    task="Relate engagement depth and frequency to retention outcomes",
    instructions=["Identify the engagement threshold that separates retained users"],
    output_format="JSON with engagementPatterns, powerUserTraits, artifacts",
    required={"engagementPatterns": OBJECTS},
    optional={"powerUserTraits": STRINGS},
    labels=("retention", "engagement"),
)

retention_report = pm_task(
    "retention-report",
    title="Write the retention analysis report",
    agent="report-writer",
    role="product analyst",
    task="Summarize cohort insights, churn drivers and recommended interventions",
    instructions=["Report the document path as reportPath"],
    output_format="JSON with reportPath, cohortInsights, recommendations, artifacts",
    required={"reportPath": STRING, "recommendations": STRINGS},
    optional={"cohortInsights": STRINGS},
    labels=("retention", "report"),
)


def _finalize(inputs: dict[str, Any], results: ResultsView) -> dict[str, Any]:
    return {
        "productName": inputs["productName"],
        "retentionAnalysis": {
            "byCohort": results["retention"]["retentionByCohort"],
            "overall": field_of(results, "retention", "overallRetention"),
        },
        "cohortInsights": field_of(results, "report", "cohortInsights", []),
        "churnAnalysis": {
            "reasons": results["churn"]["churnReasons"],
            "churnRate": field_of(results, "churn", "churnRate"),
        },
        "engagementAnalysis": field_of(results, "engagement", "engagementPatterns"),
        "recommendations": results["report"]["recommendations"],
        "report": results["report"]["reportPath"],
    }


WORKFLOW = Workflow(
    process_id=PROCESS_ID,
    description="Validate data, segment cohorts, measure retention and churn, and report.",
    input_defaults={
        "analysisTimeframe": "last-6-months",
        "cohortDefinition": {},
        "retentionMetrics": [],
        "dataSource": {},
        "outputDir": "retention-output",
        "includeEngagementAnalysis": True,
    },
    required_inputs=("productName",),
    items=(
        Step(
            "data",
            data_collection,
            gather("productName", "analysisTimeframe", "dataSource", "outputDir"),
            gates=(
                QualityGate.is_true(
                    "sufficient-data",
                    "hasSufficientData",
                    reason="Insufficient data for meaningful analysis",
                    detail_field="missingData",
                ),
            ),
        ),
        Step(
            "cohorts",
            cohort_segmentation,
            gather("productName", "analysisTimeframe", "cohortDefinition", "outputDir"),
        ),
        Breakpoint(
            "cohorts-review",
            title="Cohort Segmentation Review",
            question="Review the cohort definitions before calculating retention?",
            summary=lambda inputs, results: {
                "productName": inputs["productName"],
                "cohortsCount": count(results, "cohorts", "cohorts"),
                "dataQuality": field_of(results, "data", "dataQuality"),
            },
        ),
        Step(
            "retention",
            retention_calculation,
            gather("retentionMetrics", "outputDir", cohorts="cohorts.cohorts"),
        ),
        Step(
            "churn",
            churn_analysis,
            gather("productName", "outputDir", retention="retention.retentionByCohort"),
        ),
        Step(
            "engagement",
            engagement_analysis,
            gather("productName", "outputDir", cohorts="cohorts.cohorts"),
            when=flag("includeEngagementAnalysis"),
        ),
        Step(
            "report",
            retention_report,
            gather(
                "productName",
                "outputDir",
                retention="retention",
                churn="churn",
                engagement="engagement",
            ),
        ),
    ),
    finalize=_finalize,
)
