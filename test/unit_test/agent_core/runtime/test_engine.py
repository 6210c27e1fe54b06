from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import pytest
from pydantic_ai.messages import ModelResponse, ToolCallPart

from agentrelay.agent_core.context import ContextRetriever, InMemoryContextSource
from agentrelay.agent_core.llm import LLMRequest, LLMResponse, ToolCallDirective
from agentrelay.agent_core.llm.pydantic_ai_client import from_model_response
from agentrelay.agent_core.runtime import AgentEngine, EngineDeps, EngineLimits
from agentrelay.agent_core.runtime.engine import build_system_prompt
from agentrelay.agent_core.context import ContextDocument
from agentrelay.agent_core.schemas.domain import (
    Agent,
    BuiltinBinding,
    ExecutionRun,
    FailureReason,
    FinalAnswerStep,
    LLMRequestStep,
    RunStatus,
    Step,
    StepError,
    ToolDescriptor,
    ToolResultStep,
)
from agentrelay.agent_core.schemas.parameters import parse_parameter_schema
from agentrelay.agent_core.tools import ToolContext, ToolRegistry
from agentrelay.core.errors import FatalProviderError, NotFoundError, ValidationError
from agentrelay.events import Event, EventBus, EventType, ProgressEvent


class _AgentsRepo:
    def __init__(self, *agents: Agent) -> None:
        self.by_id: Dict[str, Agent] = {a.id: a for a in agents}

    async def get(self, agent_id: str) -> Optional[Agent]:
        return self.by_id.get(agent_id)


class _LogsRepo:
    def __init__(self) -> None:
        self.runs: Dict[str, ExecutionRun] = {}
        self.steps: List[Step] = []
        self.finished: List[tuple[str, RunStatus, Optional[FailureReason]]] = []

    async def create(self, run: ExecutionRun) -> None:
        self.runs[run.id] = run.model_copy(deep=True)

    async def mark_running(self, run_id: str, *, started_at: datetime) -> None:
        self.runs[run_id].status = RunStatus.running

    async def append_step(self, step: Step) -> None:
        if self.runs[step.run_id].is_terminal:
            raise ValueError("run is terminal")
        self.steps.append(step)

    async def finish(self, run_id: str, *, status, completed_at, failure_reason=None, error=None) -> None:
        self.runs[run_id].status = status
        self.finished.append((run_id, status, failure_reason))


class _ScriptedLLM:
    """Returns the scripted responses in order; exceptions are raised."""

    def __init__(self, *script: Union[LLMResponse, Exception]) -> None:
        self.script = list(script)
        self.requests: List[LLMRequest] = []

    async def complete(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        item = self.script.pop(0) if self.script else LLMResponse(text="done")
        if isinstance(item, Exception):
            raise item
        return item


class _HangingLLM:
    async def complete(self, request: LLMRequest) -> LLMResponse:
        await asyncio.sleep(10)
        return LLMResponse(text="late")


@dataclass
class _WeatherTool:
    calls: List[Dict[str, Any]] = field(default_factory=list)
    descriptor: ToolDescriptor = field(
        default_factory=lambda: ToolDescriptor(
            id="weather",
            name="get_weather",
            description="Weather for a city",
            parameters=parse_parameter_schema(
                {"type": "object", "properties": {"city": {"type": "string"}}, "required": ["city"]}
            ),
            binding=BuiltinBinding(handler="weather"),
        )
    )

    async def execute(self, ctx: ToolContext, *, args: Dict[str, Any]) -> Any:
        self.calls.append(args)
        if args["city"] == "Atlantis":
            raise RuntimeError("no such city")
        return {"forecast": "rain"}


def _call(name: str = "get_weather", call_id: str = "c1", **arguments: Any) -> LLMResponse:
    return LLMResponse(tool_calls=[ToolCallDirective(call_id=call_id, name=name, arguments=arguments)])


@dataclass
class _Harness:
    engine: AgentEngine
    agent: Agent
    logs: _LogsRepo
    llm: Any
    tool: _WeatherTool
    bus: EventBus
    events: List[Event]
    progress: List[ProgressEvent]


def _harness(
    llm: Any, *, limits: Optional[EngineLimits] = None, agent: Optional[Agent] = None, retriever=None, extra_tools=()
) -> _Harness:
    tool = _WeatherTool()
    registry = ToolRegistry()
    registry.register(tool)
    for extra in extra_tools:
        registry.register(extra)
    agent = agent or Agent(owner_id="owner", name="forecaster", system_prompt="Be brief.", tool_ids=["weather"])
    logs = _LogsRepo()
    bus = EventBus()
    events: List[Event] = []
    progress: List[ProgressEvent] = []

    async def on_event(event: Event) -> None:
        events.append(event)

    async def on_progress(event: ProgressEvent) -> None:
        progress.append(event)

    bus.subscribe(on_event)
    bus.subscribe_progress(on_progress)
    engine = AgentEngine(
        deps=EngineDeps(agents=_AgentsRepo(agent), logs=logs, tools=registry, llm=llm, bus=bus, retriever=retriever),
        limits=limits,
    )
    return _Harness(engine, agent, logs, llm, tool, bus, events, progress)


@pytest.mark.asyncio
async def test_direct_answer_succeeds_with_two_steps() -> None:
    h = _harness(_ScriptedLLM(LLMResponse(text="Hello!")))
    run = await h.engine.run(h.agent.id, "owner", "hi")
    await h.bus.drain()

    assert run.status == RunStatus.succeeded
    assert [s.kind for s in run.steps] == ["llm_request", "final_answer"]
    assert run.final_answer == "Hello!"
    assert [s.index for s in run.steps] == [0, 1]
    assert h.logs.runs[run.id].status == RunStatus.succeeded
    assert [e.type for e in h.events] == [EventType.agent_completed]
    assert h.events[0].owner_id == "owner"
    assert h.events[0].payload["summary"]["final_answer"] == "Hello!"


@pytest.mark.asyncio
async def test_tool_call_round_trip() -> None:
    llm = _ScriptedLLM(_call(city="Oslo"), LLMResponse(text="Rain in Oslo."))
    h = _harness(llm)
    run = await h.engine.run(h.agent.id, "owner", "weather in Oslo?")

    assert run.status == RunStatus.succeeded
    assert [s.kind for s in run.steps] == ["llm_request", "tool_call", "tool_result", "llm_request", "final_answer"]
    result = run.steps[2]
    assert isinstance(result, ToolResultStep) and result.ok
    assert result.output == {"forecast": "rain"}
    assert h.tool.calls == [{"city": "Oslo"}]

    # the second request carries the assistant tool call and the tool result
    second = llm.requests[1]
    assert [m.role for m in second.messages] == ["user", "assistant", "tool"]
    assert second.messages[2].call_id == "c1"
    assert second.tools[0].name == "get_weather"
    assert second.system_prompt == "Be brief."


@pytest.mark.asyncio
async def test_invalid_arguments_are_recorded_and_the_loop_continues() -> None:
    h = _harness(_ScriptedLLM(_call(town="Oslo"), LLMResponse(text="Sorry.")))
    run = await h.engine.run(h.agent.id, "owner", "weather?")

    assert run.status == RunStatus.succeeded
    result = run.steps[2]
    assert isinstance(result, ToolResultStep)
    assert result.error is not None and result.error.type == "ValidationError"
    assert result.error.details
    assert h.tool.calls == []


@pytest.mark.asyncio
async def test_tool_failure_and_unknown_tool_are_recorded() -> None:
    llm = _ScriptedLLM(
        LLMResponse(
            tool_calls=[
                ToolCallDirective(call_id="c1", name="get_weather", arguments={"city": "Atlantis"}),
                ToolCallDirective(call_id="c2", name="launch_rocket", arguments={}),
                ToolCallDirective(call_id="c3", name="get_weather", raw_arguments="{oops"),
            ]
        ),
        LLMResponse(text="Could not do it."),
    )
    h = _harness(llm)
    run = await h.engine.run(h.agent.id, "owner", "go")

    results = [s for s in run.steps if isinstance(s, ToolResultStep)]
    assert [r.error.type for r in results] == ["ExecutionError", "NotFoundError", "ValidationError"]
    assert run.status == RunStatus.succeeded
    assert [m.role for m in llm.requests[1].messages].count("tool") == 3


@dataclass
class _ClockTool:
    calls: List[Dict[str, Any]] = field(default_factory=list)
    descriptor: ToolDescriptor = field(
        default_factory=lambda: ToolDescriptor(
            id="clock",
            name="current_time",
            description="Current time",
            parameters=parse_parameter_schema({}),
            binding=BuiltinBinding(handler="current_time"),
        )
    )

    async def execute(self, ctx: ToolContext, *, args: Dict[str, Any]) -> Any:
        self.calls.append(args)
        return {"utc": "2026-01-01T00:00:00+00:00"}


@pytest.mark.asyncio
async def test_malformed_arguments_never_reach_a_tool_without_required_parameters() -> None:
    malformed = from_model_response(
        ModelResponse(parts=[ToolCallPart(tool_name="current_time", args="{not json", tool_call_id="c1")])
    )
    clock = _ClockTool()
    agent = Agent(owner_id="owner", name="clock", tool_ids=["clock"])
    h = _harness(_ScriptedLLM(malformed, LLMResponse(text="No idea.")), agent=agent, extra_tools=[clock])
    run = await h.engine.run(h.agent.id, "owner", "what time is it?")

    assert run.status == RunStatus.succeeded
    result = run.steps[2]
    assert isinstance(result, ToolResultStep)
    assert result.error is not None and result.error.type == "ValidationError"
    assert clock.calls == []


@pytest.mark.asyncio
async def test_iteration_cap_fails_run_with_execution_limit_exceeded() -> None:
    llm = _ScriptedLLM(*[_call(city="Oslo", call_id=f"c{i}") for i in range(10)])
    h = _harness(llm, limits=EngineLimits(max_iterations=3))
    run = await h.engine.run(h.agent.id, "owner", "loop forever")
    await h.bus.drain()

    assert run.status == RunStatus.failed
    assert run.failure_reason == FailureReason.execution_limit_exceeded
    assert len(llm.requests) == 3
    assert sum(isinstance(s, LLMRequestStep) for s in run.steps) == 3
    assert not any(isinstance(s, FinalAnswerStep) for s in run.steps)
    assert [e.type for e in h.events] == [EventType.agent_failed]


@pytest.mark.asyncio
async def test_fatal_provider_error_aborts_immediately() -> None:
    h = _harness(_ScriptedLLM(FatalProviderError("bad key")))
    run = await h.engine.run(h.agent.id, "owner", "hi")

    assert run.status == RunStatus.failed
    assert run.failure_reason == FailureReason.fatal_provider_error
    assert run.error == StepError(type="FatalProviderError", message="bad key")
    assert len(run.steps) == 1 and run.steps[0].error is not None


@pytest.mark.asyncio
async def test_llm_timeout_is_fatal() -> None:
    h = _harness(_HangingLLM(), limits=EngineLimits(llm_timeout_seconds=0.01))
    run = await h.engine.run(h.agent.id, "owner", "hi")
    assert run.failure_reason == FailureReason.fatal_provider_error


@pytest.mark.asyncio
async def test_transient_llm_error_consumes_an_iteration_and_retries() -> None:
    llm = _ScriptedLLM(RuntimeError("502 from upstream"), LLMResponse(text="ok"))
    h = _harness(llm)
    run = await h.engine.run(h.agent.id, "owner", "hi")

    assert run.status == RunStatus.succeeded
    first = run.steps[0]
    assert isinstance(first, LLMRequestStep) and first.error is not None
    assert [s.iteration for s in run.steps if isinstance(s, LLMRequestStep)] == [1, 2]


@pytest.mark.asyncio
async def test_unknown_or_invisible_agent_is_not_found() -> None:
    h = _harness(_ScriptedLLM())
    with pytest.raises(NotFoundError):
        await h.engine.run("missing", "owner", "hi")
    with pytest.raises(NotFoundError):
        await h.engine.run(h.agent.id, "stranger", "hi")
    assert h.logs.runs == {}


@pytest.mark.asyncio
async def test_public_agent_runs_for_other_users() -> None:
    agent = Agent(owner_id="owner", name="pub", is_public=True)
    h = _harness(_ScriptedLLM(LLMResponse(text="hi there")), agent=agent)
    run = await h.engine.run(agent.id, "stranger", "hi")
    await h.bus.drain()
    assert run.user_id == "stranger"
    assert h.events[0].owner_id == "stranger"


@pytest.mark.asyncio
async def test_duplicate_tool_names_are_rejected() -> None:
    agent = Agent(owner_id="owner", name="dup", tool_ids=["weather", "weather2"])
    h = _harness(_ScriptedLLM(), agent=agent)
    clone = _WeatherTool()
    clone.descriptor = clone.descriptor.model_copy(update={"id": "weather2"})
    h.engine._deps.tools.register(clone)
    with pytest.raises(ValidationError):
        await h.engine.run(agent.id, "owner", "hi")


@pytest.mark.asyncio
async def test_cancel_takes_effect_at_next_loop_boundary() -> None:
    entered = asyncio.Event()
    gate = asyncio.Event()

    class _GatedLLM(_ScriptedLLM):
        async def complete(self, request: LLMRequest) -> LLMResponse:
            entered.set()
            await gate.wait()
            return await super().complete(request)

    h = _harness(_GatedLLM(_call(city="Oslo"), LLMResponse(text="never")))
    pending = await h.engine.start(h.agent.id, "owner", "hi")
    assert pending.status == RunStatus.pending
    await entered.wait()
    assert h.engine.cancel(pending.id) is True

    gate.set()
    await h.engine.drain()
    await h.bus.drain()

    assert h.logs.finished == [(pending.id, RunStatus.failed, FailureReason.cancelled)]
    kinds = [s.kind for s in h.logs.steps]
    # the in-flight LLM request and its tool calls complete; no further request is made
    assert kinds == ["llm_request", "tool_call", "tool_result"]
    assert [e.type for e in h.events] == [EventType.agent_failed]
    assert h.engine.cancel(pending.id) is False


@pytest.mark.asyncio
async def test_progress_events_follow_step_order_and_end_with_terminal() -> None:
    h = _harness(_ScriptedLLM(_call(city="Oslo"), LLMResponse(text="done")))
    run = await h.engine.run(h.agent.id, "owner", "hi")
    await h.bus.drain()

    steps = [p for p in h.progress if p.kind == "step"]
    assert [p.data["index"] for p in steps] == list(range(len(run.steps)))
    assert h.progress[-1].terminal and h.progress[-1].kind == "completed"


@pytest.mark.asyncio
async def test_knowledge_scope_context_is_added_to_system_prompt() -> None:
    source = InMemoryContextSource()
    source.add("kb", "policy", "Refunds take 30 days")
    agent = Agent(owner_id="owner", name="support", system_prompt="Answer support questions.", knowledge_scope="kb")
    llm = _ScriptedLLM(LLMResponse(text="30 days"))
    h = _harness(llm, agent=agent, retriever=ContextRetriever(source))
    await h.engine.run(agent.id, "owner", "how long do refunds take")

    assert "Refunds take 30 days" in llm.requests[0].system_prompt
    assert llm.requests[0].system_prompt.startswith("Answer support questions.")


def test_build_system_prompt_without_documents_is_unchanged() -> None:
    assert build_system_prompt("base", []) == "base"
    prompt = build_system_prompt("base", [ContextDocument(document_id="d", content="c")])
    assert "[1] (d) c" in prompt
