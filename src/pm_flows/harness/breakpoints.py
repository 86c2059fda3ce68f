"""Human-in-the-loop breakpoint controllers.

A controller suspends the calling run until an operator approves or aborts.
There is no timeout: a breakpoint that is never resolved keeps its run
paused indefinitely.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx

from pm_flows.harness.models import BreakpointRequest, ResumeAction, ResumeSignal
from pm_flows.harness.repository import RunRepository
from pm_flows.harness.storage import utc_now

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 2.0


class BreakpointController(Protocol):
    async def pause(self, request: BreakpointRequest) -> ResumeSignal:
        """Suspend until an operator resolves ``request``."""


class BreakpointNotifier:
    """Post breakpoint requests to a webhook (chat bridge, incident tool...).

    Delivery is best effort: failures are logged and never stop the run.
    """

    def __init__(
        self,
        webhook_url: str,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self._timeout = httpx.Timeout(timeout_seconds, connect=5.0)
        self._transport = transport

    async def notify(self, request: BreakpointRequest) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(self.webhook_url, json=request.to_notification())
        except httpx.HTTPError as exc:
            logger.warning(
                "Breakpoint notification failed: breakpoint_id=%s error=%s",
                request.breakpoint_id,
                exc,
            )
            return False
        if not response.is_success:
            logger.warning(
                "Breakpoint notification rejected: breakpoint_id=%s status=%s",
                request.breakpoint_id,
                response.status_code,
            )
            return False
        return True


class DurableBreakpointController:
    """Store requests in SQLite and poll until ``pm-flows breakpoints`` resolves them.

    A request resolved before a restart is answered immediately on resume.
    """

    def __init__(
        self,
        repository: RunRepository,
        *,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        notifier: BreakpointNotifier | None = None,
    ) -> None:
        self.repository = repository
        self.poll_interval_seconds = poll_interval_seconds
        self.notifier = notifier

    async def pause(self, request: BreakpointRequest) -> ResumeSignal:
        view = self.repository.open_breakpoint(request)
        signal = view.to_signal()
        if signal is not None:
            logger.info(
                "Breakpoint already resolved: breakpoint_id=%s status=%s",
                request.breakpoint_id,
                view.status.value,
            )
            return signal

        logger.info(
            "Waiting for operator: breakpoint_id=%s title=%r",
            request.breakpoint_id,
            request.title,
        )
        if self.notifier is not None:
            await self.notifier.notify(request)

        while True:
            await asyncio.sleep(self.poll_interval_seconds)
            current = self.repository.get_breakpoint(request.breakpoint_id)
            if current is None:
                raise RuntimeError(f"Breakpoint disappeared: {request.breakpoint_id}")
            signal = current.to_signal()
            if signal is not None:
                return signal


class InMemoryBreakpointController:
    """Process-local controller; ``resolve`` completes a pending pause."""

    def __init__(self, notifier: BreakpointNotifier | None = None) -> None:
        self.notifier = notifier
        self.requests: list[BreakpointRequest] = []
        self._waiters: dict[str, asyncio.Future[ResumeSignal]] = {}
        self._decided: dict[str, ResumeSignal] = {}

    @property
    def pending(self) -> list[BreakpointRequest]:
        return [
            request
            for request in self.requests
            if request.breakpoint_id in self._waiters
            and not self._waiters[request.breakpoint_id].done()
        ]

    async def pause(self, request: BreakpointRequest) -> ResumeSignal:
        self.requests.append(request)
        decided = self._decided.get(request.breakpoint_id)
        if decided is not None:
            return decided
        if self.notifier is not None:
            await self.notifier.notify(request)
        waiter: asyncio.Future[ResumeSignal] = asyncio.get_running_loop().create_future()
        self._waiters[request.breakpoint_id] = waiter
        return await waiter

    def resolve(
        self,
        breakpoint_id: str,
        action: ResumeAction,
        *,
        note: str | None = None,
        responder: str | None = None,
    ) -> ResumeSignal:
        """Record a decision; the run waiting on ``breakpoint_id`` continues."""

        if breakpoint_id in self._decided:
            raise RuntimeError(f"Breakpoint {breakpoint_id} is already resolved")
        signal = ResumeSignal(
            action=action,
            note=note,
            responder=responder,
            resolved_at=utc_now(),
        )
        self._decided[breakpoint_id] = signal
        waiter = self._waiters.get(breakpoint_id)
        if waiter is not None and not waiter.done():
            waiter.set_result(signal)
        return signal


class AutoApproveBreakpoints:
    """Approve every request immediately; for unattended runs."""

    def __init__(self, note: str = "auto-approved") -> None:
        self.note = note
        self.requests: list[BreakpointRequest] = []

    async def pause(self, request: BreakpointRequest) -> ResumeSignal:
        self.requests.append(request)
        logger.info("Auto-approving breakpoint: breakpoint_id=%s", request.breakpoint_id)
        return ResumeSignal(
            action=ResumeAction.APPROVE,
            note=self.note,
            responder="auto",
            resolved_at=utc_now(),
        )
