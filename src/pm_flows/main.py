"""CLI entrypoint for pm-flows."""

from pathlib import Path

import rich_click as click

from pm_flows import __version__
from pm_flows.config import SUPPORTED_DEFAULT_AGENTS
from pm_flows.controllers import (
    ListBreakpointsCommand,
    ListRunsCommand,
    ProcessCliController,
    ResolveBreakpointCommand,
    ResumeRunCommand,
    RunProcessCommand,
    ShowRunCommand,
)
from pm_flows.harness.models import ResumeAction, RunStatus

click.rich_click.USE_MARKDOWN = True
PROCESS_CONTROLLER = ProcessCliController()

_DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="pm-flows")
def pm_flows_cli() -> None:
    """Product-management workflow runner."""


@pm_flows_cli.group()
def processes() -> None:
    """Process catalog commands."""


@processes.command("list")
def processes_list() -> None:
    """List available processes with their steps, breakpoints and gates."""

    _emit_lines(PROCESS_CONTROLLER.list_processes())


@pm_flows_cli.command("run")
@click.argument("process")
@_DB_PATH_OPTION
@click.option(
    "--inputs",
    "inputs_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="JSON file with process inputs.",
)
@click.option("--run-id", default=None, help="Reuse a run id to resume stored progress.")
@click.option(
    "--auto-approve",
    is_flag=True,
    default=False,
    help="Approve every breakpoint without waiting for an operator.",
)
@click.option(
    "--agent",
    type=click.Choice(SUPPORTED_DEFAULT_AGENTS, case_sensitive=False),
    default=None,
    help="Override the configured default agent.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    show_default=True,
    help="Result output format.",
)
def run_process(
    process: str,
    db_path: Path | None,
    inputs_path: Path | None,
    run_id: str | None,
    auto_approve: bool,
    agent: str | None,
    output_format: str,
) -> None:
    """Run a process by id, for example `pm/quarterly-roadmap` or `quarterly-roadmap`.

    Breakpoints wait for `pm-flows breakpoints approve` unless `--auto-approve` is given.
    """

    outcome = PROCESS_CONTROLLER.run(
        RunProcessCommand(
            db_path=db_path,
            process=process,
            inputs_path=inputs_path,
            run_id=run_id,
            auto_approve=auto_approve,
            agent=agent.lower() if agent else None,
            output_format=output_format.lower(),
        ),
    )
    _emit_lines(outcome.lines)
    if not outcome.success:
        raise click.ClickException("Process run failed.")


@pm_flows_cli.command("resume")
@click.argument("run_id")
@_DB_PATH_OPTION
@click.option("--auto-approve", is_flag=True, default=False, help="Approve pending breakpoints.")
@click.option(
    "--agent",
    type=click.Choice(SUPPORTED_DEFAULT_AGENTS, case_sensitive=False),
    default=None,
    help="Override the configured default agent.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    show_default=True,
)
def resume_run(
    run_id: str,
    db_path: Path | None,
    auto_approve: bool,
    agent: str | None,
    output_format: str,
) -> None:
    """Resume a paused or failed run; completed steps are replayed from disk."""

    outcome = PROCESS_CONTROLLER.resume(
        ResumeRunCommand(
            db_path=db_path,
            run_id=run_id,
            auto_approve=auto_approve,
            agent=agent.lower() if agent else None,
            output_format=output_format.lower(),
        ),
    )
    _emit_lines(outcome.lines)
    if not outcome.success:
        raise click.ClickException("Resume failed.")


@pm_flows_cli.group()
def runs() -> None:
    """Run history commands."""


@runs.command("list")
@_DB_PATH_OPTION
@click.option(
    "--status",
    type=click.Choice([status.value for status in RunStatus]),
    default=None,
    help="Filter by run status.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
)
def runs_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List recent runs."""

    _emit_lines(
        PROCESS_CONTROLLER.list_runs(
            ListRunsCommand(db_path=db_path, status=status, limit=limit),
        ),
    )


@runs.command("show")
@click.argument("run_id")
@_DB_PATH_OPTION
def runs_show(run_id: str, db_path: Path | None) -> None:
    """Show one run with its breakpoint history and result."""

    _emit_lines(PROCESS_CONTROLLER.show_run(ShowRunCommand(db_path=db_path, run_id=run_id)))


@pm_flows_cli.group()
def breakpoints() -> None:
    """Operator review commands."""


@breakpoints.command("list")
@_DB_PATH_OPTION
@click.option("--run-id", default=None, help="Only breakpoints of this run.")
@click.option("--pending", "pending_only", is_flag=True, default=False, help="Only pending.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
)
def breakpoints_list(
    db_path: Path | None,
    run_id: str | None,
    pending_only: bool,
    limit: int,
) -> None:
    """List breakpoints, newest first."""

    _emit_lines(
        PROCESS_CONTROLLER.list_breakpoints(
            ListBreakpointsCommand(
                db_path=db_path,
                run_id=run_id,
                pending_only=pending_only,
                limit=limit,
            ),
        ),
    )


@breakpoints.command("approve")
@click.argument("breakpoint_id")
@_DB_PATH_OPTION
@click.option("--note", default=None, help="Optional reviewer note.")
def breakpoints_approve(breakpoint_id: str, db_path: Path | None, note: str | None) -> None:
    """Approve a pending breakpoint so the run continues."""

    _resolve(breakpoint_id, db_path, ResumeAction.APPROVE, note)


@breakpoints.command("abort")
@click.argument("breakpoint_id")
@_DB_PATH_OPTION
@click.option("--note", default=None, help="Optional reviewer note.")
def breakpoints_abort(breakpoint_id: str, db_path: Path | None, note: str | None) -> None:
    """Abort a pending breakpoint; the waiting run fails."""

    _resolve(breakpoint_id, db_path, ResumeAction.ABORT, note)


def _resolve(
    breakpoint_id: str,
    db_path: Path | None,
    action: ResumeAction,
    note: str | None,
) -> None:
    outcome = PROCESS_CONTROLLER.resolve_breakpoint(
        ResolveBreakpointCommand(
            db_path=db_path,
            breakpoint_id=breakpoint_id,
            action=action,
            note=note,
        ),
    )
    _emit_lines(outcome.lines)
    if not outcome.success:
        raise click.ClickException("Breakpoint was not resolved.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    pm_flows_cli()
