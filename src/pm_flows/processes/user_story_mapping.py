"""User story mapping and release planning."""

from __future__ import annotations

from typing import Any

from pm_flows.harness.gates import GateSeverity, QualityGate
from pm_flows.harness.runner import Breakpoint, ResultsView, Step, Workflow
from pm_flows.processes.common import (
    BOOLEAN,
    OBJECT,
    OBJECTS,
    SCORE,
    STRINGS,
    count,
    field_of,
    gather,
    pm_task,
)

PROCESS_ID = "product-management/user-story-mapping"

context_analysis = pm_task(
    "context-analysis",
    title="Analyze product context and user research",
    agent="product-analyst",
    role="product analyst",
    task="Decide whether the goal, personas and backlog are enough to build a story map",
    instructions=["Set hasAdequateInformation and list missing information otherwise"],
    output_format="JSON with hasAdequateInformation, missingInformation, recommendations, "
    "artifacts",
    required={"hasAdequateInformation": BOOLEAN},
    optional={"missingInformation": STRINGS, "recommendations": STRINGS},
    labels=("story-mapping", "context"),
)

activity_identification = pm_task(
    "user-activity-identification",
    title="Identify high-level user activities",
    agent="ux-journey-mapper",
    role="UX journey mapper",
    task="Lay out the backbone of user activities in the order users perform them",
    instructions=["Break every activity into the user tasks it consists of"],
    output_format="JSON with activities, tasks, artifacts",
    required={"activities": OBJECTS, "tasks": OBJECTS},
    labels=("story-mapping", "backbone"),
)

story_creation = pm_task(
    "story-creation",
    title="Create detailed user stories",
    agent="product-owner",
    role="product owner",
    task="Write user stories under each task with estimates and priorities",
    instructions=["Estimate each story in story points"],
    output_format="JSON with stories, artifacts",
    required={"stories": OBJECTS},
    labels=("story-mapping", "stories"),
)

release_planning = pm_task(
    "release-planning",
    title="Plan releases and define the MVP",
    agent="release-planner",
    role="release planner",
    task="Slice the story map into releases that fit team capacity and mark the MVP slice",
    instructions=["Keep each release within the stated team capacity"],
    output_format="JSON with releases, mvp, artifacts",
    required={"releases": OBJECTS, "mvp": OBJECT},
    labels=("story-mapping", "releases"),
)

quality_validation = pm_task(
    "quality-validation",
    title="Validate story map quality and completeness",
    agent="story-map-auditor",
    role="agile coach",
    task="Audit the story map for coverage, slicing and estimate consistency",
    instructions=["Score from 0 to 100 and list the gaps"],
    output_format="JSON with qualityScore, gaps, artifacts",
    required={"qualityScore": SCORE},
    optional={"gaps": STRINGS},
    labels=("story-mapping", "validation"),
)


def _finalize(inputs: dict[str, Any], results: ResultsView) -> dict[str, Any]:
    return {
        "productName": inputs["productName"],
        "userActivities": results["backbone"]["activities"],
        "userTasks": results["backbone"]["tasks"],
        "userStories": results["stories"]["stories"],
        "releaseMap": {
            "releases": results["releases"]["releases"],
            "mvp": results["releases"]["mvp"],
        },
        "qualityScore": results["quality"]["qualityScore"],
    }


WORKFLOW = Workflow(
    process_id=PROCESS_ID,
    description="Build a story map backbone, write stories and slice releases.",
    input_defaults={
        "userPersonas": [],
        "existingBacklog": [],
        "outputDir": "story-map-output",
        "releaseCount": 3,
        "teamCapacity": 40,
    },
    required_inputs=("productName", "productGoal"),
    items=(
        Step(
            "context",
            context_analysis,
            gather("productName", "productGoal", "userPersonas", "existingBacklog", "outputDir"),
            gates=(
                QualityGate.is_true(
                    "adequate-information",
                    "hasAdequateInformation",
                    reason="Insufficient information",
                    detail_field="missingInformation",
                ),
            ),
        ),
        Step(
            "backbone",
            activity_identification,
            gather("productName", "productGoal", "userPersonas", "outputDir"),
        ),
        Step(
            "stories",
            story_creation,
            gather("productName", "existingBacklog", "outputDir", tasks="backbone.tasks"),
        ),
        Step(
            "releases",
            release_planning,
            gather("releaseCount", "teamCapacity", "outputDir", stories="stories.stories"),
        ),
        Breakpoint(
            "mvp-review",
            title="MVP Definition Review",
            question="Review the MVP slice and release plan?",
            summary=lambda inputs, results: {
                "productName": inputs["productName"],
                "storiesCount": count(results, "stories", "stories"),
                "releasesCount": count(results, "releases", "releases"),
                "mvp": field_of(results, "releases", "mvp"),
            },
        ),
        Step(
            "quality",
            quality_validation,
            gather(
                "productName",
                "outputDir",
                activities="backbone.activities",
                stories="stories.stories",
                releases="releases.releases",
            ),
            gates=(
                QualityGate.at_least(
                    "story-map-quality",
                    "qualityScore",
                    80,
                    severity=GateSeverity.ADVISORY,
                    reason="Story map quality below standard",
                    detail_field="gaps",
                ),
            ),
        ),
    ),
    finalize=_finalize,
)
