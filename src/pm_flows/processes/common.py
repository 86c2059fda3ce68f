"""Shared building blocks for process definitions."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pm_flows.harness.runner import ArgsBuilder, Predicate, ResultsView
from pm_flows.harness.tasks import TaskDefinition, define_task

ARTIFACT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["path"],
    "properties": {
        "path": {"type": "string"},
        "format": {"type": "string"},
        "label": {"type": "string"},
        "language": {"type": "string"},
    },
}
ARTIFACTS: dict[str, Any] = {"type": "array", "items": ARTIFACT_SCHEMA}

STRING = {"type": "string"}
BOOLEAN = {"type": "boolean"}
SCORE = {"type": "number", "minimum": 0, "maximum": 100}
STRINGS = {"type": "array", "items": STRING}
OBJECT = {"type": "object"}
OBJECTS = {"type": "array", "items": OBJECT}

BASE_LABELS = ("agent", "product-management")


def result_schema(
    required: Mapping[str, Any],
    optional: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Object schema whose ``artifacts`` key is always required."""

    return {
        "type": "object",
        "required": [*required, "artifacts"],
        "properties": {**required, **(optional or {}), "artifacts": ARTIFACTS},
    }


def pm_task(  # noqa: PLR0913
    name: str,
    *,
    title: str,
    agent: str,
    role: str,
    task: str,
    instructions: Sequence[str],
    output_format: str,
    required: Mapping[str, Any],
    optional: Mapping[str, Any] | None = None,
    labels: Sequence[str] = (),
) -> TaskDefinition:
    return define_task(
        name,
        title=title,
        agent=agent,
        role=role,
        task=task,
        instructions=[*instructions, "Save the documents you produce under outputDir"],
        output_format=output_format,
        output_schema=result_schema(required, optional),
        labels=[*BASE_LABELS, *labels],
    )


def gather(*input_keys: str, **from_steps: str) -> ArgsBuilder:
    """Build step args from workflow inputs and earlier results.

    ``from_steps`` maps an argument name to ``"<step>"`` (whole result) or
    ``"<step>.<field>"``. Steps that were skipped are left out.
    """

    def build(inputs: Mapping[str, Any], results: ResultsView) -> dict[str, Any]:
        args = {key: inputs[key] for key in input_keys if key in inputs}
        for name, ref in from_steps.items():
            step, _, path = ref.partition(".")
            if step not in results:
                continue
            value: Any = results[step]
            for part in path.split(".") if path else ():
                value = value.get(part) if isinstance(value, Mapping) else None
            args[name] = value
        return args

    return build


def flag(name: str) -> Predicate:
    """Predicate reading a boolean workflow input."""

    def check(inputs: Mapping[str, Any], _results: ResultsView) -> bool:
        return bool(inputs.get(name))

    return check


def field_of(results: ResultsView, step: str, path: str, default: Any = None) -> Any:
    if step not in results:
        return default
    value: Any = results[step]
    for part in path.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return default
        value = value[part]
    return value


def count(results: ResultsView, step: str, path: str) -> int:
    value = field_of(results, step, path, [])
    return len(value) if isinstance(value, list | dict) else 0
