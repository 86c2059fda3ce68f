"""Task descriptor factories.

A :class:`TaskDefinition` is a declarative table row (name, prompt template,
output schema). Calling it with step arguments and a :class:`TaskContext`
produces an immutable :class:`TaskDescriptor`. Factories are pure: no I/O,
no clock, no randomness.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from pm_flows.harness.contracts import task_input_path, task_result_path
from pm_flows.harness.errors import InvalidArgumentError
from pm_flows.harness.schema import check_schema

AGENT_TASK_KIND = "agent"


@dataclass(frozen=True, slots=True)
class TaskContext:
    """Per-step context handed to a factory."""

    run_id: str
    step_id: str


@dataclass(frozen=True, slots=True)
class AgentPrompt:
    role: str
    task: str
    context: dict[str, Any]
    instructions: tuple[str, ...]
    output_format: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "task": self.task,
            "context": self.context,
            "instructions": list(self.instructions),
            "output_format": self.output_format,
        }


@dataclass(frozen=True, slots=True)
class AgentSpec:
    name: str
    prompt: AgentPrompt


@dataclass(frozen=True, slots=True)
class TaskIO:
    input_path: str
    output_path: str


@dataclass(frozen=True, slots=True)
class TaskDescriptor:
    """Immutable description of one workflow step."""

    kind: str
    name: str
    title: str
    step_id: str
    agent: AgentSpec
    output_schema: dict[str, Any]
    io: TaskIO
    labels: tuple[str, ...] = ()

    def to_input_payload(self) -> dict[str, Any]:
        """Resolved input persisted before the agent is invoked."""

        return {
            "kind": self.kind,
            "name": self.name,
            "title": self.title,
            "step_id": self.step_id,
            "agent": {"name": self.agent.name, "prompt": self.agent.prompt.to_dict()},
            "output_schema": self.output_schema,
            "io": {"input_path": self.io.input_path, "output_path": self.io.output_path},
            "labels": list(self.labels),
        }

    def agent_payload(self) -> dict[str, Any]:
        """Payload handed to the agent capability."""

        return {
            "step_id": self.step_id,
            "title": self.title,
            "prompt": self.agent.prompt.to_dict(),
            "output_schema": self.output_schema,
        }


@dataclass(frozen=True, slots=True)
class TaskDefinition:
    """Declarative step template; call it to build a descriptor."""

    name: str
    title: str
    agent: str
    role: str
    task: str
    instructions: tuple[str, ...]
    output_format: str
    output_schema: dict[str, Any]
    labels: tuple[str, ...] = ()
    required_args: tuple[str, ...] = field(default=())

    def __call__(self, args: Mapping[str, Any], ctx: TaskContext) -> TaskDescriptor:
        context = _snapshot_args(self.name, args)
        missing = [key for key in self.required_args if key not in context]
        if missing:
            raise InvalidArgumentError(self.name, f"missing required args: {', '.join(missing)}")
        return TaskDescriptor(
            kind=AGENT_TASK_KIND,
            name=self.name,
            title=self.title,
            step_id=ctx.step_id,
            agent=AgentSpec(
                name=self.agent,
                prompt=AgentPrompt(
                    role=self.role,
                    task=self.task,
                    context=context,
                    instructions=self.instructions,
                    output_format=self.output_format,
                ),
            ),
            output_schema=self.output_schema,
            io=TaskIO(
                input_path=task_input_path(ctx.step_id),
                output_path=task_result_path(ctx.step_id),
            ),
            labels=self.labels,
        )


def define_task(  # noqa: PLR0913
    name: str,
    *,
    title: str,
    agent: str,
    role: str,
    task: str,
    instructions: Sequence[str],
    output_format: str,
    output_schema: Mapping[str, Any],
    labels: Sequence[str] = (),
    required_args: Sequence[str] = (),
) -> TaskDefinition:
    """Build a task definition after checking its output schema."""

    if not name.strip():
        raise ValueError("Task name must be a non-empty string")
    check_schema(output_schema)
    return TaskDefinition(
        name=name,
        title=title,
        agent=agent,
        role=role,
        task=task,
        instructions=tuple(instructions),
        output_format=output_format,
        output_schema=json.loads(json.dumps(dict(output_schema))),
        labels=tuple(labels),
        required_args=tuple(required_args),
    )


def _snapshot_args(task_name: str, args: Any) -> dict[str, Any]:
    if not isinstance(args, Mapping):
        raise InvalidArgumentError(task_name, f"expected a mapping, got {type(args).__name__}")
    bad_keys = [repr(key) for key in args if not isinstance(key, str)]
    if bad_keys:
        raise InvalidArgumentError(task_name, f"non-string keys: {', '.join(bad_keys)}")
    try:
        return json.loads(json.dumps(dict(args), allow_nan=False, sort_keys=True))
    except (TypeError, ValueError) as error:
        raise InvalidArgumentError(
            task_name,
            f"arguments are not JSON-serializable: {error}",
        ) from error
