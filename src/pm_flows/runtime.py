"""Wiring of settings into a ready-to-run harness.

Shared by the CLI controllers and the Prefect flow.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace

from pm_flows.config import Settings
from pm_flows.harness.backend import AgentCapability, CliAgentBackend, EchoAgent
from pm_flows.harness.breakpoints import (
    AutoApproveBreakpoints,
    BreakpointController,
    BreakpointNotifier,
    DurableBreakpointController,
)
from pm_flows.harness.contracts import TaskStore
from pm_flows.harness.executor import StepExecutor
from pm_flows.harness.repository import RunRepository
from pm_flows.harness.routing import RoutingDefaults
from pm_flows.harness.runner import WorkflowRunner

logger = logging.getLogger(__name__)

ECHO_AGENT = "echo"


@dataclass(slots=True)
class Harness:
    runner: WorkflowRunner
    repository: RunRepository
    store: TaskStore
    capability: AgentCapability


def build_capability(settings: Settings, *, agent_override: str | None = None) -> AgentCapability:
    """Pick the offline echo agent or the CLI subprocess backend."""

    agent = (agent_override or settings.agents.default_agent).strip().lower()
    if agent == ECHO_AGENT:
        return EchoAgent()
    routing_settings = replace(settings.agents, default_agent=agent)
    return CliAgentBackend(
        workdir_root=settings.agents.workdir_root,
        routing_defaults=RoutingDefaults.from_settings(routing_settings),
        timeout_seconds=settings.agents.timeout_seconds,
        graceful_shutdown_seconds=settings.agents.graceful_shutdown_seconds,
    )


def build_breakpoints(
    settings: Settings,
    repository: RunRepository,
    *,
    auto_approve: bool | None = None,
) -> BreakpointController:
    approve = settings.breakpoints.auto_approve if auto_approve is None else auto_approve
    if approve:
        return AutoApproveBreakpoints()
    notifier = None
    if settings.breakpoints.webhook_url:
        notifier = BreakpointNotifier(
            settings.breakpoints.webhook_url,
            timeout_seconds=settings.breakpoints.webhook_timeout_seconds,
        )
    return DurableBreakpointController(
        repository,
        poll_interval_seconds=settings.breakpoints.poll_interval_seconds,
        notifier=notifier,
    )


@contextmanager
def open_harness(
    settings: Settings,
    *,
    auto_approve: bool | None = None,
    agent_override: str | None = None,
) -> Iterator[Harness]:
    settings.validate()
    repository = RunRepository(settings.db_path)
    repository.init_schema()
    try:
        store = TaskStore(settings.workdir_root)
        capability = build_capability(settings, agent_override=agent_override)
        runner = WorkflowRunner(
            executor=StepExecutor(store, capability),
            breakpoints=build_breakpoints(settings, repository, auto_approve=auto_approve),
            repository=repository,
        )
        logger.debug(
            "Harness ready: db=%s workdir=%s capability=%s",
            settings.db_path,
            settings.workdir_root,
            type(capability).__name__,
        )
        yield Harness(runner=runner, repository=repository, store=store, capability=capability)
    finally:
        repository.close()

