"""File-based contracts for per-step task inputs and results."""

from __future__ import annotations

import json
from pathlib import Path, PurePosixPath
from typing import Any

TASKS_DIR = "tasks"
INPUT_FILENAME = "input.json"
RESULT_FILENAME = "result.json"


def task_input_path(step_id: str) -> str:
    return f"{TASKS_DIR}/{step_id}/{INPUT_FILENAME}"


def task_result_path(step_id: str) -> str:
    return f"{TASKS_DIR}/{step_id}/{RESULT_FILENAME}"


def write_json(path: Path, payload: Any) -> None:
    """Persist JSON payload using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True), "utf-8")


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


class TaskStore:
    """Path-addressed JSON blob store, namespaced by run id.

    Relative paths look like ``tasks/<stepId>/input.json`` and resolve to
    ``<root>/<run_id>/tasks/<stepId>/input.json``.
    """

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir

    def run_dir(self, run_id: str) -> Path:
        _check_segment(run_id, "run_id")
        return self.root_dir / run_id

    def resolve(self, run_id: str, relative_path: str) -> Path:
        relative = PurePosixPath(relative_path)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise ValueError(f"Store path must be relative and inside the run: {relative_path!r}")
        return self.run_dir(run_id).joinpath(*relative.parts)

    def write(self, run_id: str, relative_path: str, payload: dict[str, Any]) -> Path:
        path = self.resolve(run_id, relative_path)
        write_json(path, payload)
        return path

    def read(self, run_id: str, relative_path: str) -> dict[str, Any]:
        return load_json(self.resolve(run_id, relative_path))

    def exists(self, run_id: str, relative_path: str) -> bool:
        return self.resolve(run_id, relative_path).exists()


def _check_segment(value: str, name: str) -> None:
    if not value or "/" in value or "\\" in value or value in {".", ".."}:
        raise ValueError(f"Invalid {name}: {value!r}")
