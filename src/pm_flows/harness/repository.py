"""Durable run and breakpoint state backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import update as sa_update
from sqlmodel import Session, SQLModel, col, select

from pm_flows.harness.models import (
    BreakpointRequest,
    BreakpointStatus,
    ResumeAction,
    ResumeSignal,
    RunStatus,
)
from pm_flows.harness.storage import (
    BreakpointRecord,
    ProcessRun,
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)


@dataclass(slots=True)
class RunView:
    run_id: str
    process_id: str
    status: RunStatus
    inputs: dict[str, Any]
    started_at: datetime
    updated_at: datetime
    finished_at: datetime | None = None
    reason: str | None = None
    result: dict[str, Any] | None = None


@dataclass(slots=True)
class BreakpointView:
    breakpoint_id: str
    run_id: str
    title: str
    question: str
    status: BreakpointStatus
    created_at: datetime
    context: dict[str, Any] = field(default_factory=dict)
    note: str | None = None
    responder: str | None = None
    resolved_at: datetime | None = None

    def to_signal(self) -> ResumeSignal | None:
        """Operator decision, or ``None`` while still pending."""

        if self.status == BreakpointStatus.PENDING:
            return None
        action = (
            ResumeAction.APPROVE if self.status == BreakpointStatus.APPROVED else ResumeAction.ABORT
        )
        return ResumeSignal(
            action=action,
            note=self.note,
            responder=self.responder,
            resolved_at=self.resolved_at,
        )


class RunRepository:
    """Run and breakpoint persistence facade."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        """Create missing tables."""

        SQLModel.metadata.create_all(
            self.engine,
            tables=[ProcessRun.__table__, BreakpointRecord.__table__],  # type: ignore[attr-defined]
        )

    def start_run(
        self,
        *,
        run_id: str,
        process_id: str,
        inputs: dict[str, Any],
        started_at: datetime,
    ) -> RunView:
        """Create a run row, or move an existing non-terminal run back to running."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.get(ProcessRun, run_id)
            if row is None:
                row = ProcessRun(
                    run_id=run_id,
                    process_id=process_id,
                    status=RunStatus.RUNNING.value,
                    inputs_json=json.dumps(inputs, ensure_ascii=False, sort_keys=True),
                    started_at=to_db_datetime(started_at),
                    updated_at=to_db_datetime(now),
                )
            else:
                if row.process_id != process_id:
                    raise RuntimeError(
                        f"Run {run_id} belongs to process {row.process_id}, not {process_id}",
                    )
                if RunStatus(row.status) == RunStatus.SUCCEEDED:
                    raise RuntimeError(f"Run {run_id} already succeeded")
                row.status = RunStatus.RUNNING.value
                row.reason = None
                row.result_json = None
                row.finished_at = None
                row.updated_at = to_db_datetime(now)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_run_view(row)

    def set_run_status(
        self,
        *,
        run_id: str,
        status: RunStatus,
        reason: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> None:
        now = to_db_datetime(utc_now())
        values: dict[str, Any] = {"status": status.value, "updated_at": now}
        if status.is_terminal:
            values["finished_at"] = now
            values["reason"] = reason
            values["result_json"] = (
                json.dumps(result, ensure_ascii=False, sort_keys=True)
                if result is not None
                else None
            )
        with Session(self.engine) as session:
            outcome = session.exec(
                sa_update(ProcessRun).where(col(ProcessRun.run_id) == run_id).values(**values),
            )
            if outcome.rowcount != 1:
                session.rollback()
                raise RuntimeError(f"Run not found: {run_id}")
            session.commit()

    def get_run(self, run_id: str) -> RunView | None:
        with Session(self.engine) as session:
            row = session.get(ProcessRun, run_id)
            return _to_run_view(row) if row is not None else None

    def list_runs(self, *, status: RunStatus | None = None, limit: int = 50) -> list[RunView]:
        """List recent runs, newest first."""

        with Session(self.engine) as session:
            statement = select(ProcessRun).order_by(col(ProcessRun.started_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(ProcessRun.status == status.value)
            rows = session.exec(statement).all()
        return [_to_run_view(row) for row in rows]

    def open_breakpoint(self, request: BreakpointRequest) -> BreakpointView:
        """Store a pending request; an existing row with the same id is returned as is."""

        with Session(self.engine) as session:
            row = session.get(BreakpointRecord, request.breakpoint_id)
            if row is None:
                notification = request.to_notification()
                row = BreakpointRecord(
                    breakpoint_id=request.breakpoint_id,
                    run_id=request.run_id,
                    title=request.title,
                    question=request.question,
                    context_json=json.dumps(
                        notification["context"],
                        ensure_ascii=False,
                        sort_keys=True,
                    ),
                    status=BreakpointStatus.PENDING.value,
                    created_at=to_db_datetime(utc_now()),
                )
                session.add(row)
                session.commit()
                session.refresh(row)
            return _to_breakpoint_view(row)

    def get_breakpoint(self, breakpoint_id: str) -> BreakpointView | None:
        with Session(self.engine) as session:
            row = session.get(BreakpointRecord, breakpoint_id)
            return _to_breakpoint_view(row) if row is not None else None

    def resolve_breakpoint(
        self,
        *,
        breakpoint_id: str,
        action: ResumeAction,
        note: str | None = None,
        responder: str | None = None,
    ) -> BreakpointView:
        """Record the operator decision for a pending breakpoint."""

        status = (
            BreakpointStatus.APPROVED
            if action == ResumeAction.APPROVE
            else BreakpointStatus.ABORTED
        )
        with Session(self.engine) as session:
            row = session.get(BreakpointRecord, breakpoint_id)
            if row is None:
                raise RuntimeError(f"Breakpoint not found: {breakpoint_id}")
            outcome = session.exec(
                sa_update(BreakpointRecord)
                .where(
                    col(BreakpointRecord.breakpoint_id) == breakpoint_id,
                    col(BreakpointRecord.status) == BreakpointStatus.PENDING.value,
                )
                .values(
                    status=status.value,
                    note=note,
                    responder=responder,
                    resolved_at=to_db_datetime(utc_now()),
                ),
            )
            if outcome.rowcount != 1:
                session.rollback()
                raise RuntimeError(
                    f"Breakpoint {breakpoint_id} is already resolved (status={row.status})",
                )
            session.commit()
            session.refresh(row)
            return _to_breakpoint_view(row)

    def list_breakpoints(
        self,
        *,
        run_id: str | None = None,
        status: BreakpointStatus | None = None,
        limit: int = 50,
    ) -> list[BreakpointView]:
        with Session(self.engine) as session:
            statement = (
                select(BreakpointRecord)
                .order_by(col(BreakpointRecord.created_at).desc())
                .limit(limit)
            )
            if run_id is not None:
                statement = statement.where(BreakpointRecord.run_id == run_id)
            if status is not None:
                statement = statement.where(BreakpointRecord.status == status.value)
            rows = session.exec(statement).all()
        return [_to_breakpoint_view(row) for row in rows]


def _to_run_view(row: ProcessRun) -> RunView:
    return RunView(
        run_id=row.run_id,
        process_id=row.process_id,
        status=RunStatus(row.status),
        inputs=_load_object(row.inputs_json) or {},
        started_at=to_utc_aware_datetime(row.started_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        finished_at=(
            to_utc_aware_datetime(row.finished_at) if row.finished_at is not None else None
        ),
        reason=row.reason,
        result=_load_object(row.result_json),
    )


def _to_breakpoint_view(row: BreakpointRecord) -> BreakpointView:
    return BreakpointView(
        breakpoint_id=row.breakpoint_id,
        run_id=row.run_id,
        title=row.title,
        question=row.question,
        status=BreakpointStatus(row.status),
        created_at=to_utc_aware_datetime(row.created_at),
        context=_load_object(row.context_json) or {},
        note=row.note,
        responder=row.responder,
        resolved_at=(
            to_utc_aware_datetime(row.resolved_at) if row.resolved_at is not None else None
        ),
    )


def _load_object(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, dict) else None
