"""Subprocess-based agent capability for CLI agents (claude, codex, gemini)."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
import subprocess
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import IO, Any
from uuid import uuid4

from pm_flows.harness.backend.base import BackendRunRequest, BackendRunResult
from pm_flows.harness.backend.manifest import (
    AgentManifest,
    materialize_invocation,
    read_manifest,
)
from pm_flows.harness.errors import AgentInvocationError
from pm_flows.harness.routing import RoutingDefaults, resolve_routing

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


class BackendRunError(AgentInvocationError):
    """CLI command could not be built or started."""


class CliAgentBackend:
    """Run one CLI agent subprocess per invocation.

    The agent reads its task from a materialized workdir and writes the JSON
    result to ``output_result_path`` named in the manifest.
    """

    def __init__(
        self,
        *,
        workdir_root: Path,
        routing_defaults: RoutingDefaults,
        timeout_seconds: int = 900,
        graceful_shutdown_seconds: int = 30,
    ) -> None:
        self.workdir_root = workdir_root
        self._routing_defaults = routing_defaults
        self._timeout_seconds = timeout_seconds
        self._graceful_shutdown_seconds = graceful_shutdown_seconds

    async def invoke(self, agent_name: str, payload: dict[str, Any]) -> Any:
        routing = resolve_routing(defaults=self._routing_defaults, agent_name=agent_name)
        invocation_id = str(uuid4())
        materialized = materialize_invocation(
            self.workdir_root,
            invocation_id=invocation_id,
            agent_name=agent_name,
            payload={**payload, "routing": routing.to_metadata()},
            prompt="",
        )
        prompt = build_agent_prompt(payload=payload, manifest=materialized.manifest)
        materialized.prompt_path.write_text(prompt, "utf-8")

        cancelled = threading.Event()
        request = BackendRunRequest(
            manifest_path=materialized.manifest_path,
            timeout_seconds=self._timeout_seconds,
            agent=routing.agent,
            profile=routing.profile,
            model=routing.model,
            command_template=routing.command_template,
            shutdown_requested=cancelled.is_set,
            graceful_shutdown_seconds=self._graceful_shutdown_seconds,
        )
        started = time.monotonic()
        worker = asyncio.ensure_future(asyncio.to_thread(self.run, request))
        try:
            result = await asyncio.shield(worker)
        except asyncio.CancelledError:
            # Give the subprocess its grace period, then make sure it is gone.
            cancelled.set()
            logger.warning(
                "Agent invocation cancelled: agent_name=%s agent=%s workdir=%s",
                agent_name,
                routing.agent,
                materialized.manifest.workdir,
            )
            await asyncio.wait({worker})
            raise
        elapsed = time.monotonic() - started

        if result.timed_out:
            raise AgentInvocationError(
                f"Agent {agent_name} ({routing.agent}) timed out after {elapsed:.1f}s",
                agent=agent_name,
                transient=True,
            )
        if result.exit_code != 0:
            raise AgentInvocationError(
                f"Agent {agent_name} ({routing.agent}) exit code {result.exit_code} "
                f"after {elapsed:.1f}s; stderr at {result.stderr_path}",
                agent=agent_name,
            )

        output_path = Path(materialized.manifest.output_result_path)
        if not output_path.exists():
            raise AgentInvocationError(
                f"Agent {agent_name} finished without writing {output_path}",
                agent=agent_name,
            )
        logger.info(
            "Agent invocation completed: agent_name=%s agent=%s model=%s elapsed=%.1fs",
            agent_name,
            routing.agent,
            routing.model,
            elapsed,
        )
        return output_path.read_text("utf-8")

    def run(self, request: BackendRunRequest) -> BackendRunResult:
        manifest = read_manifest(request.manifest_path)
        stdout_path = Path(manifest.output_stdout_path)
        stderr_path = Path(manifest.output_stderr_path)
        stdout_path.parent.mkdir(parents=True, exist_ok=True)
        prompt_file = Path(manifest.workdir) / "input" / "task_prompt.txt"
        prompt = prompt_file.read_text("utf-8") if prompt_file.exists() else ""

        run_args = build_run_args(
            command_template=request.command_template,
            model=request.model,
            prompt=prompt,
            prompt_file=prompt_file,
            manifest_path=request.manifest_path,
        )

        env = os.environ.copy()
        env["PM_FLOWS_AGENT"] = request.agent
        env["PM_FLOWS_MODEL"] = request.model
        env["PM_FLOWS_MODEL_PROFILE"] = request.profile

        try:
            with (
                stdout_path.open("w", encoding="utf-8") as stdout_handle,
                stderr_path.open("w", encoding="utf-8") as stderr_handle,
            ):
                exit_code, timed_out = _run_subprocess(
                    run_args=run_args,
                    env=env,
                    cwd=Path(manifest.workdir),
                    timeout_seconds=request.timeout_seconds,
                    stdout_handle=stdout_handle,
                    stderr_handle=stderr_handle,
                    shutdown_requested=request.shutdown_requested,
                    graceful_shutdown_seconds=request.graceful_shutdown_seconds,
                )
        except FileNotFoundError as error:
            raise BackendRunError(
                f"CLI agent command not found: {run_args[0]}",
                agent=request.agent,
            ) from error
        except OSError as error:
            raise BackendRunError(
                f"CLI agent failed to start: {error}",
                agent=request.agent,
                transient=True,
            ) from error
        return BackendRunResult(
            exit_code=exit_code,
            timed_out=timed_out,
            stdout_path=stdout_path,
            stderr_path=stderr_path,
        )


def build_agent_prompt(*, payload: dict[str, Any], manifest: AgentManifest) -> str:
    """Render the structured prompt payload as instructions for a CLI agent."""

    prompt = payload.get("prompt", {})
    instructions = "\n".join(f"- {line}" for line in prompt.get("instructions", []))
    schema = json.dumps(payload.get("output_schema", {}), ensure_ascii=False, indent=2)
    context = json.dumps(prompt.get("context", {}), ensure_ascii=False, indent=2)
    return (
        f"You are a {prompt.get('role', 'product specialist')}.\n"
        f"Task: {prompt.get('task', payload.get('title', ''))}\n"
        f"\n"
        f"Context:\n{context}\n"
        f"\n"
        f"Instructions:\n{instructions}\n"
        f"\n"
        f"Output: {prompt.get('output_format', 'JSON')}\n"
        f"\n"
        f"Your task manifest is at: {manifest.workdir}/meta/task_manifest.json\n"
        f"Write the result as a single JSON object to {manifest.output_result_path}.\n"
        f"It must validate against this JSON schema:\n{schema}\n"
        f"List every document you write under the 'artifacts' key as "
        f'{{"path": ..., "format": ..., "label": ...}}.\n'
    )


def build_run_args(
    *,
    command_template: str,
    model: str,
    prompt: str,
    prompt_file: Path,
    manifest_path: Path,
) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise BackendRunError("CLI agent command template is empty.")
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped and (
        "{task_manifest}" not in stripped
    ):
        raise BackendRunError(
            "CLI agent command template must include {prompt}, {prompt_file} or {task_manifest}.",
        )
    try:
        rendered = stripped.format(
            model=shlex.quote(model),
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
            task_manifest=shlex.quote(str(manifest_path)),
        )
    except KeyError as error:
        raise BackendRunError(f"Unsupported command template placeholder: {error}") from error

    argv = shlex.split(rendered)
    if not argv:
        raise BackendRunError("CLI agent command template rendered empty command.")
    return argv


def _run_subprocess(  # noqa: PLR0913
    *,
    run_args: list[str],
    env: dict[str, str],
    cwd: Path,
    timeout_seconds: int,
    stdout_handle: IO[str],
    stderr_handle: IO[str],
    shutdown_requested: Callable[[], bool] | None,
    graceful_shutdown_seconds: int | None,
) -> tuple[int, bool]:
    process = subprocess.Popen(  # noqa: S603
        run_args,
        env=env,
        cwd=cwd,
        stdout=stdout_handle,
        stderr=stderr_handle,
        text=True,
    )
    start_monotonic = time.monotonic()
    shutdown_deadline: float | None = None
    graceful_seconds = max(0, graceful_shutdown_seconds or 0)

    while True:
        returncode = process.poll()
        if returncode is not None:
            return returncode, False

        now = time.monotonic()
        if now - start_monotonic >= timeout_seconds:
            _terminate_process(process)
            return TIMEOUT_EXIT_CODE, True

        if shutdown_requested is not None and shutdown_requested():
            if shutdown_deadline is None:
                shutdown_deadline = now + graceful_seconds
            if now >= shutdown_deadline:
                _terminate_process(process)
                return TIMEOUT_EXIT_CODE, True

        time.sleep(0.1)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
