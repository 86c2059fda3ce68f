"""Product council charter and governance review process."""

from __future__ import annotations

from typing import Any

from pm_flows.harness.gates import GateSeverity, QualityGate
from pm_flows.harness.runner import Breakpoint, ResultsView, Step, Workflow
from pm_flows.processes.common import (
    OBJECT,
    OBJECTS,
    SCORE,
    STRING,
    STRINGS,
    count,
    field_of,
    gather,
    pm_task,
)

PROCESS_ID = "product-management/product-council-review"

charter_definition = pm_task(
    "council-charter-definition",
    title="Define council charter and governance framework",
    agent="governance-architect",
    role="product governance architect",
    task="Write the council charter: purpose, scope, authority and decision model",
    instructions=["Bound the decision scope to the listed product lines"],
    output_format="JSON with charter, artifacts",
    required={"charter": OBJECT},
    labels=("council", "charter"),
)

membership_structure = pm_task(
    "membership-structure",
    title="Establish membership structure and role definitions",
    agent="membership-designer",
    role="organizational designer",
    task="Define council seats, roles and voting rights for the requested council size",
    instructions=["Name the chair and the quorum rule"],
    output_format="JSON with members, roles, quorum, artifacts",
    required={"members": OBJECTS},
    optional={"roles": OBJECTS, "quorum": STRING},
    labels=("council", "membership"),
)

decision_criteria = pm_task(
    "decision-criteria",
    title="Define decision criteria and evaluation framework",
    agent="criteria-designer",
    role="decision analyst",
    task="Define weighted criteria the council uses to approve, defer or reject proposals",
    instructions=["Weights must add up to 100"],
    output_format="JSON with criteria, artifacts",
    required={"criteria": OBJECTS},
    labels=("council", "criteria"),
)

escalation_process = pm_task(
    "escalation-process",
    title="Define escalation process and conflict resolution",
    agent="escalation-architect",
    role="governance specialist",
    task="Describe escalation levels, triggers and resolution time limits",
    instructions=["Use the requested number of escalation levels"],
    output_format="JSON with levels, artifacts",
    required={"levels": OBJECTS},
    labels=("council", "escalation"),
)

governance_validation = pm_task(
    "governance-validation",
    title="Validate governance framework completeness",
    agent="governance-auditor",
    role="governance auditor",
    task="Score the governance framework for completeness and consistency",
    instructions=["Score from 0 to 100 and list gaps and recommendations"],
    output_format="JSON with validationScore, gaps, recommendations, artifacts",
    required={"validationScore": SCORE},
    optional={"gaps": STRINGS, "recommendations": STRINGS},
    labels=("council", "validation"),
)

package_assembly = pm_task(
    "package-assembly",
    title="Assemble final product council governance package",
    agent="package-assembler",
    role="technical writer",
    task="Assemble charter, membership, criteria and escalation into one governance package",
    instructions=["Report the package index path as packagePath"],
    output_format="JSON with packagePath, documents, artifacts",
    required={"packagePath": STRING},
    optional={"documents": STRINGS},
    labels=("council", "package"),
)


def _finalize(inputs: dict[str, Any], results: ResultsView) -> dict[str, Any]:
    return {
        "organizationName": inputs["organizationName"],
        "councilCharter": results["charter"]["charter"],
        "membershipStructure": {"members": results["membership"]["members"]},
        "decisionCriteria": results["criteria"]["criteria"],
        "escalationProcess": {"levels": results["escalation"]["levels"]},
        "validationScore": results["validation"]["validationScore"],
        "documentation": field_of(results, "package", "documents", []),
        "package": results["package"]["packagePath"],
    }


WORKFLOW = Workflow(
    process_id=PROCESS_ID,
    description="Charter a product council and validate its governance framework.",
    input_defaults={
        "productLines": [],
        "councilPurpose": "",
        "outputDir": "council-output",
        "reviewFrequency": "monthly",
        "decisionScope": [],
        "stakeholders": [],
        "existingGovernance": {},
        "escalationLevels": 3,
        "councilSize": "medium",
        "decisionModel": "consensus-driven",
    },
    required_inputs=("organizationName",),
    items=(
        Step(
            "charter",
            charter_definition,
            gather(
                "organizationName",
                "productLines",
                "councilPurpose",
                "decisionScope",
                "decisionModel",
                "outputDir",
            ),
        ),
        Step(
            "membership",
            membership_structure,
            gather(
                "organizationName",
                "stakeholders",
                "councilSize",
                "outputDir",
                charter="charter",
            ),
        ),
        Breakpoint(
            "charter-review",
            title="Charter and Membership Review",
            question="Review the council charter and membership before defining criteria?",
            summary=lambda inputs, results: {
                "organizationName": inputs["organizationName"],
                "membersCount": count(results, "membership", "members"),
            },
        ),
        Step(
            "criteria",
            decision_criteria,
            gather("organizationName", "decisionScope", "outputDir", charter="charter.charter"),
        ),
        Step(
            "escalation",
            escalation_process,
            gather(
                "organizationName",
                "escalationLevels",
                "outputDir",
                members="membership.members",
            ),
        ),
        Step(
            "validation",
            governance_validation,
            gather(
                "organizationName",
                "existingGovernance",
                "outputDir",
                charter="charter.charter",
                members="membership.members",
                criteria="criteria.criteria",
                escalation="escalation.levels",
            ),
            gates=(
                QualityGate.at_least(
                    "governance",
                    "validationScore",
                    85,
                    severity=GateSeverity.ADVISORY,
                    reason="Governance gaps identified",
                    detail_field="gaps",
                ),
            ),
        ),
        Step(
            "package",
            package_assembly,
            gather(
                "organizationName",
                "outputDir",
                charter="charter.charter",
                validationScore="validation.validationScore",
            ),
        ),
    ),
    finalize=_finalize,
)
