"""Orchestration harness: task descriptors, step execution, breakpoints and gates."""

from pm_flows.harness.breakpoints import (
    AutoApproveBreakpoints,
    BreakpointController,
    BreakpointNotifier,
    DurableBreakpointController,
    InMemoryBreakpointController,
)
from pm_flows.harness.contracts import TaskStore
from pm_flows.harness.errors import (
    AbortedAtBreakpoint,
    AgentInvocationError,
    HarnessError,
    InvalidArgumentError,
    SchemaViolationError,
)
from pm_flows.harness.executor import StepExecutor
from pm_flows.harness.gates import GateSeverity, QualityGate, evaluate_gate
from pm_flows.harness.models import (
    Artifact,
    BreakpointRequest,
    ResumeAction,
    ResumeSignal,
    RunStatus,
    StepResult,
    WorkflowResult,
)
from pm_flows.harness.runner import Breakpoint, Gate, Run, Step, Workflow, WorkflowRunner
from pm_flows.harness.schema import ValidationResult, Violation, validate
from pm_flows.harness.tasks import TaskContext, TaskDefinition, TaskDescriptor, define_task

__all__ = [
    "AbortedAtBreakpoint",
    "AgentInvocationError",
    "Artifact",
    "AutoApproveBreakpoints",
    "Breakpoint",
    "BreakpointController",
    "BreakpointNotifier",
    "BreakpointRequest",
    "DurableBreakpointController",
    "Gate",
    "GateSeverity",
    "HarnessError",
    "InMemoryBreakpointController",
    "InvalidArgumentError",
    "QualityGate",
    "ResumeAction",
    "ResumeSignal",
    "Run",
    "RunStatus",
    "SchemaViolationError",
    "Step",
    "StepExecutor",
    "StepResult",
    "TaskContext",
    "TaskDefinition",
    "TaskDescriptor",
    "TaskStore",
    "ValidationResult",
    "Violation",
    "Workflow",
    "WorkflowResult",
    "WorkflowRunner",
    "define_task",
    "evaluate_gate",
    "validate",
]
