"""Feature definition and PRD creation."""

from __future__ import annotations

from typing import Any

from pm_flows.harness.gates import GateSeverity, QualityGate
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

PROCESS_ID = "product-management/feature-definition-prd"

problem_analysis = pm_task(
    "problem-statement-analysis",
    title="Analyze and validate problem statement",
    agent="product-strategist",
    role="senior product manager and strategic analyst",
    task="Validate the problem statement, assess feature viability, and refine the problem",
    instructions=[
        "Check who has the problem, what it is, why it matters, and when it occurs",
        "Score impact from 0 to 100 across business value, user impact and strategy",
        "Set isViable; when false, list concerns and a recommendation",
        "When viable, rewrite the problem statement for clarity",
    ],
    output_format="JSON with isViable, refinedProblemStatement, impactScore, concerns, "
    "recommendation, keyAssumptions, artifacts",
    required={"isViable": BOOLEAN, "impactScore": SCORE},
    optional={
        "refinedProblemStatement": STRING,
        "concerns": STRINGS,
        "recommendation": STRING,
        "keyAssumptions": STRINGS,
    },
    labels=("prd", "problem-analysis"),
)

user_research = pm_task(
    "user-research-analysis",
    title="Analyze user research and define personas",
    agent="ux-researcher",
    role="user researcher",
    task="Synthesize target users into personas, jobs to be done and pain points",
    instructions=[
        "Build one persona per distinct target user segment",
        "List the jobs to be done and the pain points each persona reports",
    ],
    output_format="JSON with personas, jobsToBeDone, painPoints, artifacts",
    required={"personas": OBJECTS},
    optional={"jobsToBeDone": STRINGS, "painPoints": STRINGS},
    labels=("prd", "user-research"),
)

user_stories = pm_task(
    "user-story-generation",
    title="Generate user stories",
    agent="product-owner",
    role="product owner",
    task="Write user stories grouped into epics, each with a MoSCoW priority",
    instructions=[
        "Use the 'As a <persona>, I want <goal>, so that <benefit>' form",
        "Group related stories into epics",
        "Tag every story with priority must-have, should-have or could-have",
    ],
    output_format="JSON with userStories, epics, artifacts",
    required={"userStories": OBJECTS, "epics": OBJECTS},
    labels=("prd", "user-stories"),
)

acceptance_criteria = pm_task(
    "acceptance-criteria-definition",
    title="Define acceptance criteria",
    agent="qa-analyst",
    role="quality analyst",
    task="Write testable Given/When/Then acceptance criteria for every user story",
    instructions=[
        "Cover happy path, edge cases and error handling",
        "Mark each criteria set as testable or not",
    ],
    output_format="JSON with acceptanceCriteria, artifacts",
    required={"acceptanceCriteria": OBJECTS},
    labels=("prd", "acceptance-criteria"),
)

technical_specs = pm_task(
    "technical-specifications",
    title="Draft technical specifications",
    agent="technical-architect",
    role="software architect",
    task="Outline components, integrations, data models and APIs the feature needs",
    instructions=[
        "Stay at the level of detail an engineering kickoff needs",
        "List open technical risks",
    ],
    output_format="JSON with components, integrations, dataModels, apis, risks, artifacts",
    required={"components": OBJECTS},
    optional={"integrations": OBJECTS, "dataModels": OBJECTS, "apis": OBJECTS, "risks": STRINGS},
    labels=("prd", "technical-specs"),
)

success_metrics = pm_task(
    "success-metrics-definition",
    title="Define success metrics",
    agent="product-analyst",
    role="product analyst",
    task="Define the north star metric, leading indicators and targets for the feature",
    instructions=[
        "Give each metric a baseline, a target and a measurement method",
        "Name guardrail metrics that must not regress",
    ],
    output_format="JSON with northStarMetric, successMetrics, guardrails, artifacts",
    required={"successMetrics": OBJECTS},
    optional={"northStarMetric": STRING, "guardrails": STRINGS},
    labels=("prd", "metrics"),
)

prd_assembly = pm_task(
    "prd-document-assembly",
    title="Assemble the PRD",
    agent="technical-writer",
    role="technical writer",
    task="Assemble all findings into one product requirements document",
    instructions=[
        "Include overview, problem, personas, stories, criteria, specs and metrics",
        "Write the document as markdown and report its path as prdPath",
    ],
    output_format="JSON with prdPath, sections, artifacts",
    required={"prdPath": STRING},
    optional={"sections": STRINGS},
    labels=("prd", "assembly"),
)

quality_validation = pm_task(
    "prd-quality-validation",
    title="Validate PRD quality",
    agent="prd-reviewer",
    role="principal product manager",
    task="Score the PRD for completeness, clarity and testability",
    instructions=[
        "Score each component from 0 to 100 and give an overallScore",
        "List the gaps and the recommendations that would close them",
    ],
    output_format="JSON with overallScore, componentScores, gaps, recommendations, artifacts",
    required={"overallScore": SCORE},
    optional={"componentScores": OBJECT, "gaps": STRINGS, "recommendations": STRINGS},
    labels=("prd", "validation"),
)


def _stories_summary(inputs: dict[str, Any], results: ResultsView) -> dict[str, Any]:
    return {
        "featureName": inputs.get("featureName"),
        "problemStatement": field_of(results, "problem", "refinedProblemStatement"),
        "impactScore": field_of(results, "problem", "impactScore"),
        "personasCount": count(results, "research", "personas"),
        "userStoriesCount": count(results, "stories", "userStories"),
        "epicsCount": count(results, "stories", "epics"),
    }


def _finalize(inputs: dict[str, Any], results: ResultsView) -> dict[str, Any]:
    stories = field_of(results, "stories", "userStories", [])
    by_priority = {"mustHave": 0, "shouldHave": 0, "couldHave": 0}
    for story in stories:
        priority = story.get("priority") if isinstance(story, dict) else None
        key = {"must-have": "mustHave", "should-have": "shouldHave", "could-have": "couldHave"}
        if priority in key:
            by_priority[key[priority]] += 1
    specs = results.get("specs")
    return {
        "featureName": inputs.get("featureName"),
        "prdDocument": results["assembly"]["prdPath"],
        "problemStatement": field_of(results, "problem", "refinedProblemStatement"),
        "impactScore": results["problem"]["impactScore"],
        "userStories": {
            "total": len(stories),
            "byPriority": by_priority,
            "epics": results["stories"]["epics"],
        },
        "acceptanceCriteria": {"total": count(results, "criteria", "acceptanceCriteria")},
        "technicalSpecs": (
            {"components": len(specs["components"])} if specs is not None else None
        ),
        "successMetrics": results["metrics"]["successMetrics"],
        "qualityScore": results["quality"]["overallScore"],
    }


WORKFLOW = Workflow(
    process_id=PROCESS_ID,
    description="Validate a problem, then write stories, criteria, specs and a reviewed PRD.",
    input_defaults={
        "problemStatement": "",
        "targetUsers": [],
        "businessGoals": [],
        "outputDir": "prd-output",
        "priorityLevel": "medium",
        "stakeholders": [],
        "constraints": [],
        "requireApproval": True,
        "includeTechnicalSpecs": True,
    },
    required_inputs=("featureName",),
    items=(
        Step(
            "problem",
            problem_analysis,
            gather(
                "featureName",
                "problemStatement",
                "targetUsers",
                "businessGoals",
                "outputDir",
            ),
            gates=(
                QualityGate.is_true(
                    "viability",
                    "isViable",
                    reason="Problem statement not viable",
                    detail_field="concerns",
                ),
            ),
        ),
        Step(
            "research",
            user_research,
            gather(
                "featureName",
                "targetUsers",
                "outputDir",
                problem="problem.refinedProblemStatement",
            ),
        ),
        Step(
            "stories",
            user_stories,
            gather("featureName", "outputDir", personas="research.personas"),
        ),
        Step(
            "criteria",
            acceptance_criteria,
            gather("featureName", "outputDir", userStories="stories.userStories"),
        ),
        Breakpoint(
            "stories-review",
            title="User Stories Review",
            question="User stories and acceptance criteria are ready. Review before "
            "proceeding to technical specifications?",
            summary=_stories_summary,
        ),
        Step(
            "specs",
            technical_specs,
            gather("featureName", "constraints", "outputDir", userStories="stories.userStories"),
            when=flag("includeTechnicalSpecs"),
        ),
        Step(
            "metrics",
            success_metrics,
            gather("featureName", "businessGoals", "outputDir", userStories="stories.userStories"),
        ),
        Step(
            "assembly",
            prd_assembly,
            gather(
                "featureName",
                "outputDir",
                problem="problem",
                personas="research.personas",
                userStories="stories.userStories",
                acceptanceCriteria="criteria.acceptanceCriteria",
                technicalSpecs="specs",
                successMetrics="metrics.successMetrics",
            ),
        ),
        Step(
            "quality",
            quality_validation,
            gather("featureName", "outputDir", prdPath="assembly.prdPath"),
            gates=(
                QualityGate.at_least(
                    "prd-quality",
                    "overallScore",
                    80,
                    severity=GateSeverity.ADVISORY,
                    reason="PRD quality below standard",
                    detail_field="gaps",
                ),
            ),
        ),
        Breakpoint(
            "final-approval",
            title="PRD Approval",
            question="Approve the PRD for publishing?",
            summary=lambda inputs, results: {
                "featureName": inputs.get("featureName"),
                "qualityScore": field_of(results, "quality", "overallScore"),
                "stakeholders": inputs.get("stakeholders"),
            },
            when=flag("requireApproval"),
        ),
    ),
    finalize=_finalize,
)
