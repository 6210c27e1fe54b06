"""End-to-end scenarios over SQL repositories, the engine and the webhook dispatcher."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Dict, List, Set, Union

import httpx
import pytest
import pytest_asyncio

from agentrelay.agent_core.llm import LLMRequest, LLMResponse, ToolCallDirective
from agentrelay.agent_core.schemas.domain import (
    BuiltinBinding,
    FinalAnswerStep,
    RunStatus,
    ToolDescriptor,
    ToolResultStep,
)
from agentrelay.agent_core.schemas.parameters import parse_parameter_schema
from agentrelay.agent_core.tools import ToolContext
from agentrelay.core.errors import ExecutionError
from agentrelay.server.core.config import EngineSettings, Settings, WebhookSettings
from agentrelay.server.services.platform import PlatformService
from agentrelay.webhooks import DeliveryOutcome, verify


class _ScriptedLLM:
    def __init__(self) -> None:
        self.script: List[Union[LLMResponse, Exception]] = []

    async def complete(self, request: LLMRequest) -> LLMResponse:
        item = self.script.pop(0) if self.script else LLMResponse(text="done")
        if isinstance(item, Exception):
            raise item
        return item


@dataclass
class _FlakyInventoryTool:
    """Fails the first call, answers afterwards."""

    calls: int = 0
    descriptor: ToolDescriptor = field(
        default_factory=lambda: ToolDescriptor(
            id="inventory",
            name="check_inventory",
            parameters=parse_parameter_schema(
                {"type": "object", "properties": {"sku": {"type": "string"}}, "required": ["sku"]}
            ),
            binding=BuiltinBinding(handler="inventory"),
        )
    )

    async def execute(self, ctx: ToolContext, *, args: Dict[str, Any]) -> Any:
        self.calls += 1
        if self.calls == 1:
            raise ExecutionError("inventory service unavailable")
        return {"sku": args["sku"], "in_stock": 4}


@dataclass
class _Receiver:
    status_code: int = 200
    failing_hosts: Set[str] = field(default_factory=set)
    requests: List[httpx.Request] = field(default_factory=list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host in self.failing_hosts:
            return httpx.Response(503)
        return httpx.Response(self.status_code)


@dataclass
class _World:
    platform: PlatformService
    llm: _ScriptedLLM
    receiver: _Receiver
    tool: _FlakyInventoryTool


@pytest_asyncio.fixture
async def world(sql_repos) -> AsyncGenerator[_World, None]:
    llm = _ScriptedLLM()
    receiver = _Receiver()
    tool = _FlakyInventoryTool()
    settings = Settings(
        _env_file=None,
        engine=EngineSettings(max_iterations=4),
        webhook=WebhookSettings(max_attempts=3, backoff_base_seconds=0.0),
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(receiver)) as client:
        platform = PlatformService(repos=sql_repos, llm=llm, http_client=client, settings=settings, extra_tools=[tool])
        yield _World(platform=platform, llm=llm, receiver=receiver, tool=tool)
        await platform.shutdown()


@pytest.mark.asyncio
async def test_successful_run_delivers_one_signed_webhook(world: _World) -> None:
    platform = world.platform
    hook = await platform.webhooks.create("alice", name="ci", target_url="http://mock-ci/hook", events=["agent.completed"])
    agent = await platform.create_agent("alice", name="greeter")

    run = await platform.run_agent(agent.id, "alice", "hello")
    await platform.bus.drain()

    assert run.status == RunStatus.succeeded
    deliveries = await platform.webhooks.list_deliveries(hook.id, "alice")
    assert len(deliveries) == 1
    assert deliveries[0].outcome == DeliveryOutcome.delivered
    request = world.receiver.requests[0]
    assert verify(request.content, request.headers["X-Webhook-Signature"], hook.secret)
    assert deliveries[0].request_signature == request.headers["X-Webhook-Signature"]


@pytest.mark.asyncio
async def test_tool_failure_is_fed_back_and_run_succeeds(world: _World) -> None:
    platform = world.platform
    agent = await platform.create_agent("alice", name="stock", tool_ids=["inventory"])
    world.llm.script = [
        LLMResponse(tool_calls=[ToolCallDirective(call_id="c1", name="check_inventory", arguments={"sku": "A1"})]),
        LLMResponse(text="Inventory is unavailable right now."),
    ]

    run = await platform.run_agent(agent.id, "alice", "is A1 in stock?")

    assert run.status == RunStatus.succeeded
    results = [s for s in run.steps if isinstance(s, ToolResultStep)]
    assert len(results) == 1
    assert results[0].error is not None and results[0].error.type == "ExecutionError"
    assert isinstance(run.steps[-1], FinalAnswerStep)
    stored = await platform.repos.logs.get(run.id)
    assert [s.kind for s in stored.steps] == [s.kind for s in run.steps]


@pytest.mark.asyncio
async def test_failing_target_is_abandoned_after_max_attempts(world: _World) -> None:
    platform = world.platform
    world.receiver.status_code = 500
    hook = await platform.webhooks.create("alice", name="ci", target_url="http://mock-ci/hook", events=["agent.completed"])
    agent = await platform.create_agent("alice", name="greeter")

    run = await platform.run_agent(agent.id, "alice", "hello")
    await platform.bus.drain()

    assert run.status == RunStatus.succeeded
    deliveries = list(reversed(await platform.webhooks.list_deliveries(hook.id, "alice")))
    assert [d.attempt_number for d in deliveries] == [1, 2, 3]
    assert [d.outcome for d in deliveries] == [
        DeliveryOutcome.retrying,
        DeliveryOutcome.retrying,
        DeliveryOutcome.abandoned,
    ]
    assert len({d.idempotency_key for d in deliveries}) == 1
    assert len(world.receiver.requests) == 3


@pytest.mark.asyncio
async def test_run_terminates_at_iteration_cap(world: _World) -> None:
    platform = world.platform
    hook = await platform.webhooks.create("alice", name="ci", target_url="http://mock-ci/hook", events=["agent.failed"])
    agent = await platform.create_agent("alice", name="stock", tool_ids=["inventory"])
    world.llm.script = [
        LLMResponse(tool_calls=[ToolCallDirective(call_id=f"c{i}", name="check_inventory", arguments={"sku": "A1"})])
        for i in range(10)
    ]

    run = await platform.run_agent(agent.id, "alice", "loop forever")
    await platform.bus.drain()

    assert run.status == RunStatus.failed
    assert run.failure_reason.value == "ExecutionLimitExceeded"
    assert sum(1 for s in run.steps if s.kind == "llm_request") == 4
    deliveries = await platform.webhooks.list_deliveries(hook.id, "alice")
    assert [d.event_type for d in deliveries] == ["agent.failed"]


@pytest.mark.asyncio
async def test_invalid_tool_arguments_do_not_crash_the_run(world: _World) -> None:
    platform = world.platform
    agent = await platform.create_agent("alice", name="stock", tool_ids=["inventory"])
    world.llm.script = [
        LLMResponse(tool_calls=[ToolCallDirective(call_id="c1", name="check_inventory", arguments={"sku": 7})]),
        LLMResponse(text="Could not check."),
    ]

    run = await platform.run_agent(agent.id, "alice", "check 7")

    assert run.status == RunStatus.succeeded
    result = next(s for s in run.steps if isinstance(s, ToolResultStep))
    assert result.error.type == "ValidationError"
    assert world.tool.calls == 0


@pytest.mark.asyncio
async def test_one_failing_subscription_does_not_block_another(world: _World) -> None:
    platform = world.platform
    good = await platform.webhooks.create("alice", name="good", target_url="http://mock-good/hook", events=["workflow.failed"])
    bad = await platform.webhooks.create("alice", name="bad", target_url="http://mock-bad/hook", events=["workflow.failed"])

    world.receiver.failing_hosts.add("mock-bad")
    await platform.publish_workflow_event("wf-1", "alice", status="failed", execution_id="exec-1")
    await platform.bus.drain()

    assert [d.outcome for d in await platform.webhooks.list_deliveries(good.id, "alice")] == [DeliveryOutcome.delivered]
    assert (await platform.webhooks.list_deliveries(bad.id, "alice"))[0].outcome == DeliveryOutcome.abandoned
