"""Deterministic offline agent.

Synthesizes the smallest payload that satisfies a step's output schema. Used
for local dry runs and as a CLI agent in integration tests::

    PM_FLOWS_CLAUDE_COMMAND_TEMPLATE="python -m pm_flows.harness.backend.echo_agent \
        --task-manifest {task_manifest}"
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pm_flows.harness.backend.manifest import read_manifest
from pm_flows.harness.contracts import load_json, write_json


def synthesize_from_schema(schema: Mapping[str, Any], *, label: str = "value") -> Any:
    """Build a minimal instance of ``schema``.

    Booleans are ``True`` and numbers take the schema maximum when one is
    declared, so echo runs pass the harness quality gates.
    """

    if "const" in schema:
        return schema["const"]
    if schema.get("enum"):
        return schema["enum"][0]

    schema_type = schema.get("type", "object")
    if isinstance(schema_type, list):
        schema_type = next((item for item in schema_type if item != "null"), "null")

    if schema_type == "object":
        properties = schema.get("properties", {})
        return {
            key: synthesize_from_schema(properties.get(key, {}), label=key)
            for key in schema.get("required", properties.keys())
        }
    if schema_type == "array":
        count = max(1, int(schema.get("minItems", 1)))
        items = schema.get("items", {"type": "string"})
        return [synthesize_from_schema(items, label=label) for _ in range(count)]
    if schema_type == "boolean":
        return True
    if schema_type in ("integer", "number"):
        value = schema.get("maximum", schema.get("minimum", 0))
        return int(value) if schema_type == "integer" else value
    if schema_type == "null":
        return None
    text = f"echo {label}"
    min_length = int(schema.get("minLength", 0))
    return text.ljust(min_length, ".")


def build_echo_result(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Synthesize a result for one agent payload and name its artifact."""

    schema = payload.get("output_schema", {})
    result = synthesize_from_schema(schema)
    if not isinstance(result, dict):
        return {"value": result}
    if "artifacts" in schema.get("properties", {}):
        step_id = str(payload.get("step_id", "step"))
        result["artifacts"] = [
            {
                "path": f"artifacts/{step_id}.md",
                "format": "markdown",
                "label": str(payload.get("title", step_id)),
            },
        ]
    return result


class EchoAgent:
    """In-process capability returning synthesized payloads."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def invoke(self, agent_name: str, payload: dict[str, Any]) -> Any:
        self.calls.append((agent_name, payload))
        return build_echo_result(payload)


def main(argv: list[str] | None = None) -> int:
    """Answer one CLI invocation described by a task manifest."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--task-manifest", required=True)
    args = parser.parse_args(argv)

    manifest = read_manifest(Path(args.task_manifest))
    task_input = load_json(Path(manifest.task_input_path))
    write_json(Path(manifest.output_result_path), build_echo_result(task_input))
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
