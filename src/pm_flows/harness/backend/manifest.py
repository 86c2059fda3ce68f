"""Per-invocation workdir contract shared by the CLI backend and CLI agents."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from pm_flows.harness.contracts import load_json, write_json

MANIFEST_CONTRACT_VERSION = 1


@dataclass(slots=True)
class AgentManifest:
    """Manifest stored in each invocation workdir."""

    contract_version: int
    invocation_id: str
    agent_name: str
    workdir: str
    task_input_path: str
    output_result_path: str
    output_stdout_path: str
    output_stderr_path: str


@dataclass(slots=True)
class MaterializedInvocation:
    manifest_path: Path
    manifest: AgentManifest
    prompt_path: Path


def materialize_invocation(
    root_dir: Path,
    *,
    invocation_id: str,
    agent_name: str,
    payload: dict[str, Any],
    prompt: str,
) -> MaterializedInvocation:
    """Create the deterministic directory layout for one agent call."""

    base_dir = root_dir / invocation_id
    input_dir = base_dir / "input"
    output_dir = base_dir / "output"
    meta_dir = base_dir / "meta"
    for directory in (input_dir, output_dir, meta_dir):
        directory.mkdir(parents=True, exist_ok=True)

    task_input_path = input_dir / "task_input.json"
    prompt_path = input_dir / "task_prompt.txt"
    manifest_path = meta_dir / "task_manifest.json"
    write_json(task_input_path, payload)
    prompt_path.write_text(prompt, "utf-8")

    manifest = AgentManifest(
        contract_version=MANIFEST_CONTRACT_VERSION,
        invocation_id=invocation_id,
        agent_name=agent_name,
        workdir=str(base_dir),
        task_input_path=str(task_input_path),
        output_result_path=str(output_dir / "agent_result.json"),
        output_stdout_path=str(output_dir / "agent_stdout.log"),
        output_stderr_path=str(output_dir / "agent_stderr.log"),
    )
    write_json(manifest_path, asdict(manifest))
    return MaterializedInvocation(
        manifest_path=manifest_path,
        manifest=manifest,
        prompt_path=prompt_path,
    )


def read_manifest(path: Path) -> AgentManifest:
    """Load and validate an invocation manifest."""

    raw = load_json(path)
    required = (
        "invocation_id",
        "agent_name",
        "workdir",
        "task_input_path",
        "output_result_path",
        "output_stdout_path",
        "output_stderr_path",
    )
    missing = [key for key in required if key not in raw]
    if missing:
        raise ValueError(f"Manifest missing required fields: {', '.join(missing)}")

    contract_version = raw.get("contract_version", MANIFEST_CONTRACT_VERSION)
    if not isinstance(contract_version, int) or contract_version < 1:
        raise ValueError("task_manifest.contract_version must be an integer >= 1")
    return AgentManifest(
        contract_version=contract_version,
        **{key: str(raw[key]) for key in required},
    )
