"""Prefect entry point for process runs."""

from __future__ import annotations

import logging
from typing import Any

from prefect import flow

from pm_flows.config import Settings
from pm_flows.processes import get_process
from pm_flows.runtime import open_harness

logger = logging.getLogger(__name__)


@flow(name="pm_process")
async def process_flow(
    *,
    process_id: str,
    inputs: dict[str, Any],
    run_id: str | None = None,
    auto_approve: bool | None = None,
    agent_override: str | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """Run one product-management process and return its JSON result.

    Steps are not wrapped in Prefect retries: agent failures end the run and
    a later call with the same ``run_id`` resumes from stored step results.
    """

    settings = settings or Settings.from_env()
    workflow = get_process(process_id)
    with open_harness(
        settings,
        auto_approve=auto_approve,
        agent_override=agent_override,
    ) as harness:
        result = await harness.runner.run(workflow, inputs, run_id=run_id)
    if not result.success:
        logger.warning(
            "Process %s run %s failed: %s",
            workflow.process_id,
            result.run_id,
            result.reason,
        )
    return result.to_dict()
