"""Registry of product-management process workflows."""

from pm_flows.harness.runner import Workflow
from pm_flows.processes import (
    feature_definition_prd,
    product_council_review,
    product_market_fit,
    quarterly_roadmap,
    retention_cohort_analysis,
    user_story_mapping,
)

PROCESSES: dict[str, Workflow] = {
    module.WORKFLOW.process_id: module.WORKFLOW
    for module in (
        feature_definition_prd,
        quarterly_roadmap,
        retention_cohort_analysis,
        user_story_mapping,
        product_market_fit,
        product_council_review,
    )
}


def get_process(process_id: str) -> Workflow:
    """Look up a workflow by full id or by its short name (``quarterly-roadmap``)."""

    if process_id in PROCESSES:
        return PROCESSES[process_id]
    matches = [
        workflow for key, workflow in PROCESSES.items() if key.rsplit("/", 1)[-1] == process_id
    ]
    if len(matches) == 1:
        return matches[0]
    raise KeyError(f"Unknown process: {process_id}. Available: {', '.join(sorted(PROCESSES))}")


__all__ = ["PROCESSES", "get_process"]
