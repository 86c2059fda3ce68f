from __future__ import annotations

import asyncio
import json

import allure
import httpx

from pm_flows.harness.breakpoints import BreakpointNotifier, InMemoryBreakpointController
from pm_flows.harness.models import BreakpointRequest, ResumeAction

pytestmark = [
    allure.epic("Harness"),
    allure.feature("Breakpoint Notifications"),
]

REQUEST = BreakpointRequest(
    breakpoint_id="run-1:06-themes-review",
    run_id="run-1",
    title="Strategic Themes Review",
    question="Approve the themes?",
    summary={"themesCount": 3},
)


def test_notifier_posts_notification_json() -> None:
    received: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(204)

    notifier = BreakpointNotifier(
        "https://hooks.example.com/pm",
        transport=httpx.MockTransport(handler),
    )

    assert asyncio.run(notifier.notify(REQUEST)) is True
    assert received == [REQUEST.to_notification()]


def test_notifier_reports_rejection_without_raising() -> None:
    notifier = BreakpointNotifier(
        "https://hooks.example.com/pm",
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )

    assert asyncio.run(notifier.notify(REQUEST)) is False


def test_notifier_swallows_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    notifier = BreakpointNotifier(
        "https://hooks.example.com/pm",
        transport=httpx.MockTransport(handler),
    )

    assert asyncio.run(notifier.notify(REQUEST)) is False


def test_controller_notifies_before_waiting() -> None:
    posted: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        posted.append(json.loads(request.content)["breakpointId"])
        return httpx.Response(200)

    controller = InMemoryBreakpointController(
        notifier=BreakpointNotifier(
            "https://hooks.example.com/pm",
            transport=httpx.MockTransport(handler),
        ),
    )

    async def scenario():
        task = asyncio.create_task(controller.pause(REQUEST))
        while not controller.pending:
            await asyncio.sleep(0.01)
        assert posted == ["run-1:06-themes-review"]
        controller.resolve(REQUEST.breakpoint_id, ResumeAction.APPROVE)
        return await task

    assert asyncio.run(scenario()).approved
