"""Single-step execution: persist input, invoke agent once, validate, persist result."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pm_flows.harness.backend.base import AgentCapability
from pm_flows.harness.contracts import TaskStore
from pm_flows.harness.errors import AgentInvocationError, SchemaViolationError
from pm_flows.harness.models import StepResult, parse_artifacts
from pm_flows.harness.schema import ValidationResult, validate, validate_payload
from pm_flows.harness.tasks import TaskDescriptor

if TYPE_CHECKING:
    from pm_flows.harness.runner import Run

logger = logging.getLogger(__name__)


class StepExecutor:
    """Run task descriptors against an agent capability.

    Exactly two files are written per step under the run namespace:
    ``tasks/<stepId>/input.json`` before invocation and
    ``tasks/<stepId>/result.json`` after a successful validation.
    """

    def __init__(self, store: TaskStore, capability: AgentCapability) -> None:
        self.store = store
        self.capability = capability

    async def run_step(self, descriptor: TaskDescriptor, run: Run) -> StepResult:
        replayed = self._replay(descriptor, run)
        if replayed is not None:
            return replayed

        self.store.write(run.run_id, descriptor.io.input_path, descriptor.to_input_payload())
        logger.info(
            "Invoking agent: run_id=%s step_id=%s task=%s agent=%s",
            run.run_id,
            descriptor.step_id,
            descriptor.name,
            descriptor.agent.name,
        )
        try:
            raw = await self.capability.invoke(descriptor.agent.name, descriptor.agent_payload())
        except AgentInvocationError:
            raise
        except Exception as error:
            raise AgentInvocationError(
                f"Agent {descriptor.agent.name} failed on step {descriptor.step_id}: {error}",
                agent=descriptor.agent.name,
            ) from error

        validation = validate_payload(raw, descriptor.output_schema)
        return self._accept(descriptor, run, validation)

    def record_result(self, descriptor: TaskDescriptor, run: Run, value: Any) -> StepResult:
        """Validate and persist a result produced without the agent, such as a fallback."""

        validation = validate_payload(value, descriptor.output_schema)
        return self._accept(descriptor, run, validation)

    def _accept(
        self,
        descriptor: TaskDescriptor,
        run: Run,
        validation: ValidationResult,
    ) -> StepResult:
        if not validation.is_valid:
            logger.warning(
                "Schema violation: run_id=%s step_id=%s violations=%s",
                run.run_id,
                descriptor.step_id,
                validation.error_summary,
            )
            raise SchemaViolationError(descriptor.step_id, validation.violations)
        if not isinstance(validation.payload, dict):
            not_object = validate(validation.payload, {"type": "object"})
            raise SchemaViolationError(descriptor.step_id, not_object.violations)

        self.store.write(run.run_id, descriptor.io.output_path, validation.payload)
        return StepResult(
            step_id=descriptor.step_id,
            task_name=descriptor.name,
            value=validation.payload,
            artifacts=parse_artifacts(validation.payload.get("artifacts")),
        )

    def _replay(self, descriptor: TaskDescriptor, run: Run) -> StepResult | None:
        if not self.store.exists(run.run_id, descriptor.io.output_path):
            return None
        try:
            stored = self.store.read(run.run_id, descriptor.io.output_path)
        except (OSError, ValueError, TypeError) as error:
            logger.warning(
                "Ignoring unreadable stored result: run_id=%s step_id=%s error=%s",
                run.run_id,
                descriptor.step_id,
                error,
            )
            return None
        if not validate(stored, descriptor.output_schema).is_valid:
            logger.warning(
                "Stored result no longer validates, re-running: run_id=%s step_id=%s",
                run.run_id,
                descriptor.step_id,
            )
            return None
        logger.info("Replaying stored result: run_id=%s step_id=%s", run.run_id, descriptor.step_id)
        return StepResult(
            step_id=descriptor.step_id,
            task_name=descriptor.name,
            value=stored,
            artifacts=parse_artifacts(stored.get("artifacts")),
            replayed=True,
        )
