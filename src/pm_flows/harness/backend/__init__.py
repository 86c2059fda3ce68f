"""Agent capability implementations."""

from pm_flows.harness.backend.base import AgentCapability, BackendRunRequest, BackendRunResult
from pm_flows.harness.backend.cli_backend import BackendRunError, CliAgentBackend
from pm_flows.harness.backend.echo_agent import EchoAgent

__all__ = [
    "AgentCapability",
    "BackendRunError",
    "BackendRunRequest",
    "BackendRunResult",
    "CliAgentBackend",
    "EchoAgent",
]
