from __future__ import annotations

"""LangGraph runtime engine.

``AgentEngine`` executes one agent invocation end to end: it turns a user
input plus an ``Agent`` definition into a sequence of LLM requests and tool
invocations and produces a final answer with a full audit trail.

Execution model
---------------

- The engine runs a LangGraph state machine over a mutable ``_GraphState``::

      start -> call_model -> invoke_tools -> call_model -> ... -> finish

- ``start`` retrieves bounded context for the agent's knowledge scope and
  builds the system prompt.
- ``call_model`` sends the conversation plus the tool declarations to the
  LLM. Tool-call directives route to ``invoke_tools``; a plain answer routes
  to ``finish``.
- ``invoke_tools`` runs each directive through the ``ToolRegistry`` and feeds
  the results (or errors) back as tool messages.
- ``finish`` persists the terminal status and publishes the lifecycle event.

Every step is appended to the execution log and published as a progress
event the moment it happens.

Failure semantics
-----------------

- Tool ``ValidationError``/``ExecutionError`` and unknown tool names are
  recorded as ``ToolResult`` errors; the loop continues.
- A non-fatal LLM error is recorded on the ``LLMRequest`` step and consumes
  an iteration.
- ``FatalProviderError`` and an LLM timeout fail the run immediately.
- Reaching ``max_iterations`` fails the run with ``ExecutionLimitExceeded``.
- Cancellation is honoured at loop boundaries only and fails the run with
  ``Cancelled``.
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from langgraph.graph import END, StateGraph
from pydantic_core import to_jsonable_python

from ...core.errors import (
    AgentRelayError,
    Cancelled,
    ExecutionLimitExceeded,
    FatalProviderError,
    NotFoundError,
    ValidationError,
)
from ...core.monitoring import log_agent_completion, log_agent_run, log_error
from ...events.models import Event, EventType, ProgressEvent
from ..context import ContextDocument
from ..llm.base import ChatMessage, LLMRequest, LLMResponse, ToolCallDirective, ToolDeclaration
from ..schemas.domain import (
    ExecutionRun,
    FailureReason,
    FinalAnswerStep,
    LLMRequestStep,
    RunStatus,
    Step,
    StepError,
    ToolCallStep,
    ToolDescriptor,
    ToolResultStep,
)
from ..tools import ToolContext
from .models import EngineDeps, EngineLimits, _GraphState, _RunContext

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_json_text(value: Any) -> str:
    return json.dumps(to_jsonable_python(value, fallback=str), ensure_ascii=False)


def build_system_prompt(base: str, documents: List[ContextDocument]) -> str:
    """Append retrieved context snippets to the agent's system prompt."""
    if not documents:
        return base
    lines = [base.rstrip(), "", "Use the following context when it is relevant to the request:"]
    for i, doc in enumerate(documents, start=1):
        lines.append(f"[{i}] ({doc.document_id}) {doc.content}")
    return "\n".join(lines).lstrip()


class AgentEngine:
    """Run agents with a bounded tool-calling loop, persistence and events.

    The engine is orchestration-only: tools are executed by the
    ``ToolRegistry``, the model is reached through an ``LLMClient`` and all
    state is written through the repositories in ``EngineDeps``.
    """

    def __init__(self, *, deps: EngineDeps, limits: Optional[EngineLimits] = None) -> None:
        """
        Initialize the AgentEngine.

        Args:
            deps: The runtime dependencies (repositories, tools, LLM, bus).
            limits: Iteration cap and timeouts; defaults to ``EngineLimits()``.
        """
        self._deps = deps
        self._limits = limits or EngineLimits()
        self._graph = self._build_graph()
        self._inflight: Set[str] = set()
        self._cancel_requested: Set[str] = set()
        self._tasks: Set[asyncio.Task[ExecutionRun]] = set()

    @property
    def limits(self) -> EngineLimits:
        return self._limits

    def _build_graph(self):
        """Build and compile the LangGraph state machine."""
        g: StateGraph = StateGraph(_GraphState)
        g.add_node("start", self._node_start)
        g.add_node("call_model", self._node_call_model)
        g.add_node("invoke_tools", self._node_invoke_tools)
        g.add_node("finish", self._node_finish)

        g.set_entry_point("start")
        g.add_edge("start", "call_model")
        g.add_conditional_edges(
            "call_model",
            self._route_after_model,
            {
                "tools": "invoke_tools",
                "retry": "call_model",
                "finish": "finish",
            },
        )
        g.add_conditional_edges(
            "invoke_tools",
            self._route_after_tools,
            {
                "continue": "call_model",
                "finish": "finish",
            },
        )
        g.add_edge("finish", END)
        return g.compile()

    # ------------------------------------------------------------------ public

    async def run(self, agent_id: str, user_id: str, input: str, *, run_id: Optional[str] = None) -> ExecutionRun:
        """
        Execute an agent and wait for the terminal run.

        Raises:
            NotFoundError: The agent (or one of its tools) does not exist or
                the agent is not visible to ``user_id``.
            ValidationError: The agent's tools have clashing names.

        Returns:
            The terminal ``ExecutionRun``. Run failures are reported through
            its status, never raised.
        """
        ctx = await self._prepare(agent_id, user_id, input, run_id=run_id)
        return await self._execute(ctx)

    async def start(self, agent_id: str, user_id: str, input: str, *, run_id: Optional[str] = None) -> ExecutionRun:
        """Create the run and execute it in the background; returns the pending run."""
        ctx = await self._prepare(agent_id, user_id, input, run_id=run_id)
        snapshot = ctx.run.model_copy(deep=True)
        # cancellable from the moment the caller learns the run id
        self._inflight.add(ctx.run.id)
        task = asyncio.ensure_future(self._execute(ctx))
        task.set_name(f"agent-run:{ctx.run.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return snapshot

    def cancel(self, run_id: str) -> bool:
        """
        Request cancellation of an in-flight run.

        Returns:
            True if the run is in flight and will stop at the next loop
            boundary, False otherwise.
        """
        if run_id not in self._inflight:
            return False
        self._cancel_requested.add(run_id)
        logger.info(f"Cancellation requested for run {run_id}")
        return True

    @property
    def active_runs(self) -> int:
        return len(self._inflight)

    def is_running(self, run_id: str) -> bool:
        return run_id in self._inflight

    async def drain(self) -> None:
        """Wait for all background runs started with ``start``."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ---------------------------------------------------------------- lifecycle

    async def _prepare(self, agent_id: str, user_id: str, input: str, *, run_id: Optional[str]) -> _RunContext:
        agent = await self._deps.agents.get(agent_id)
        if agent is None or not agent.visible_to(user_id):
            raise NotFoundError("agent", agent_id)

        tools_by_name: Dict[str, ToolDescriptor] = {}
        for tool_id in agent.tool_ids:
            descriptor = self._deps.tools.resolve(tool_id)
            if descriptor.name in tools_by_name:
                raise ValidationError(f"agent '{agent.id}' declares tool name '{descriptor.name}' twice")
            tools_by_name[descriptor.name] = descriptor

        run = ExecutionRun(agent_id=agent.id, user_id=user_id, input=input)
        if run_id is not None:
            run.id = run_id
        await self._deps.logs.create(run)
        return _RunContext(agent=agent, run=run, tools_by_name=tools_by_name)

    async def _execute(self, ctx: _RunContext) -> ExecutionRun:
        run = ctx.run
        self._inflight.add(run.id)
        try:
            run.status = RunStatus.running
            run.started_at = _utc_now()
            ctx.started_monotonic = time.monotonic()
            await self._deps.logs.mark_running(run.id, started_at=run.started_at)
            log_agent_run(run.id, run.agent_id, run.user_id)
            logger.info(f"Run {run.id} started: agent={run.agent_id} user={run.user_id}")

            state: _GraphState = {"ctx": ctx, "messages": [], "iteration": 0}
            recursion_limit = self._limits.max_iterations * 2 + 10
            await self._graph.ainvoke(state, config={"recursion_limit": recursion_limit})
        except Exception as e:
            logger.error(f"Run {run.id} crashed: {e}", exc_info=True)
            log_error(type(e).__name__, str(e), {"run_id": run.id})
            if not run.is_terminal:
                await self._finalize(ctx, RunStatus.failed, None, StepError(type=type(e).__name__, message=str(e)))
        finally:
            self._inflight.discard(run.id)
            self._cancel_requested.discard(run.id)
        return run

    async def _append(self, ctx: _RunContext, step: Step) -> None:
        await self._deps.logs.append_step(step)
        ctx.run.steps.append(step)
        await self._deps.bus.publish_progress(
            ProgressEvent(run_id=ctx.run.id, kind="step", data=step.model_dump(mode="json"))
        )

    def _next_index(self, ctx: _RunContext) -> int:
        return len(ctx.run.steps)

    async def _finalize(
        self,
        ctx: _RunContext,
        status: RunStatus,
        reason: Optional[FailureReason],
        error: Optional[StepError],
    ) -> None:
        run = ctx.run
        run.status = status
        run.failure_reason = reason
        run.error = error
        run.completed_at = _utc_now()
        duration_ms = (time.monotonic() - ctx.started_monotonic) * 1000 if ctx.started_monotonic else 0.0

        try:
            await self._deps.logs.finish(
                run.id,
                status=status,
                completed_at=run.completed_at,
                failure_reason=reason,
                error=error,
            )
        except Exception as e:
            logger.error(f"Could not persist terminal status of run {run.id}: {e}", exc_info=True)

        log_agent_completion(run.id, status.value, duration_ms, reason.value if reason else None)
        logger.info(f"Run {run.id} {status.value}" + (f" ({reason.value})" if reason else ""))

        summary: Dict[str, Any] = {
            "final_answer": run.final_answer,
            "step_count": len(run.steps),
            "tool_calls": sum(1 for s in run.steps if isinstance(s, ToolCallStep)),
            "duration_ms": round(duration_ms, 3),
            "failure_reason": reason.value if reason else None,
            "error": error.model_dump(exclude_none=True) if error else None,
        }
        payload = {
            "run_id": run.id,
            "agent_id": run.agent_id,
            "user_id": run.user_id,
            "status": status.value,
            "summary": summary,
        }
        succeeded = status == RunStatus.succeeded
        await self._deps.bus.publish_progress(
            ProgressEvent(run_id=run.id, kind="completed" if succeeded else "failed", data=payload, terminal=True)
        )
        event_type = EventType.agent_completed if succeeded else EventType.agent_failed
        await self._deps.bus.publish(
            Event.for_source(
                event_type,
                source_id=run.id,
                step_index=len(run.steps),
                payload=payload,
                owner_id=run.user_id,
            )
        )

    # ------------------------------------------------------------------- nodes

    async def _node_start(self, state: _GraphState) -> _GraphState:
        """Retrieve bounded context and seed the conversation."""
        ctx = state["ctx"]
        documents: List[ContextDocument] = []
        retriever = self._deps.retriever
        if retriever is not None and ctx.agent.knowledge_scope:
            try:
                documents = await asyncio.wait_for(
                    retriever.retrieve(ctx.run.input, ctx.agent.knowledge_scope, self._limits.context_limit),
                    timeout=self._limits.retrieval_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Context retrieval timed out for run {ctx.run.id}; continuing without context")
            except Exception as e:
                logger.warning(f"Context retrieval failed for run {ctx.run.id}: {e}; continuing without context")

        ctx.system_prompt = build_system_prompt(ctx.agent.system_prompt, documents)
        state["messages"] = [ChatMessage(role="user", content=ctx.run.input)]
        return state

    async def _node_call_model(self, state: _GraphState) -> _GraphState:
        """Send one LLM request and record it.

        This node is also the loop boundary: cancellation and the iteration cap
        are checked here before anything is sent.
        """
        ctx = state["ctx"]
        run_id = ctx.run.id
        state["pending_calls"] = []

        if run_id in self._cancel_requested:
            return self._terminate(state, RunStatus.failed, FailureReason.cancelled, Cancelled(f"run {run_id} was cancelled"))

        if state["iteration"] >= self._limits.max_iterations:
            err = ExecutionLimitExceeded(f"no final answer after {self._limits.max_iterations} LLM requests")
            return self._terminate(state, RunStatus.failed, FailureReason.execution_limit_exceeded, err)

        state["iteration"] += 1
        params = ctx.agent.model_parameters
        request = LLMRequest(
            system_prompt=ctx.system_prompt,
            messages=list(state["messages"]),
            tools=[ToolDeclaration(**d.declaration()) for d in ctx.tools_by_name.values()],
            model=params.model,
            temperature=params.temperature,
            max_tokens=params.max_tokens,
        )

        started = time.perf_counter()
        response: Optional[LLMResponse] = None
        error: Optional[AgentRelayError] = None
        fatal = False
        try:
            response = await asyncio.wait_for(
                self._deps.llm.complete(request), timeout=self._limits.llm_timeout_seconds
            )
        except asyncio.TimeoutError:
            error = FatalProviderError(f"LLM request timed out after {self._limits.llm_timeout_seconds}s")
            fatal = True
        except FatalProviderError as e:
            error = e
            fatal = True
        except Exception as e:
            logger.warning(f"LLM request failed for run {run_id}: {e}")
            error = AgentRelayError(f"{type(e).__name__}: {e}")

        await self._append(
            ctx,
            LLMRequestStep(
                run_id=run_id,
                index=self._next_index(ctx),
                iteration=state["iteration"],
                message_count=len(request.messages),
                tool_names=[t.name for t in request.tools],
                model=(response.model if response is not None else None) or request.model,
                duration_ms=(time.perf_counter() - started) * 1000,
                error=StepError(type=error.code, message=error.message) if error is not None else None,
            ),
        )

        if fatal:
            assert error is not None
            return self._terminate(state, RunStatus.failed, FailureReason.fatal_provider_error, error)
        if response is None:
            return state

        if response.tool_calls:
            state["messages"].append(
                ChatMessage(role="assistant", content=response.text or "", tool_calls=list(response.tool_calls))
            )
            state["pending_calls"] = list(response.tool_calls)
            return state

        await self._append(
            ctx,
            FinalAnswerStep(run_id=run_id, index=self._next_index(ctx), text=response.text or ""),
        )
        state["_finished"] = True
        state["_terminal_status"] = RunStatus.succeeded.value
        return state

    async def _node_invoke_tools(self, state: _GraphState) -> _GraphState:
        """Execute the pending tool calls and feed results back to the model."""
        ctx = state["ctx"]
        tool_ctx = ToolContext(run_id=ctx.run.id, user_id=ctx.run.user_id, knowledge_scope=ctx.agent.knowledge_scope)
        for call in state.get("pending_calls") or []:
            descriptor = ctx.tools_by_name.get(call.name)
            await self._append(
                ctx,
                ToolCallStep(
                    run_id=ctx.run.id,
                    index=self._next_index(ctx),
                    tool_id=descriptor.id if descriptor else None,
                    tool_name=call.name,
                    call_id=call.call_id,
                    arguments=dict(call.arguments),
                ),
            )
            output, error = await self._invoke_one(call, descriptor, tool_ctx)
            await self._append(
                ctx,
                ToolResultStep(
                    run_id=ctx.run.id,
                    index=self._next_index(ctx),
                    tool_id=descriptor.id if descriptor else None,
                    tool_name=call.name,
                    call_id=call.call_id,
                    output=output,
                    error=error,
                ),
            )
            content = _to_json_text({"error": error.model_dump(exclude_none=True)} if error else {"output": output})
            state["messages"].append(
                ChatMessage(role="tool", content=content, call_id=call.call_id, tool_name=call.name)
            )
        state["pending_calls"] = []
        return state

    async def _invoke_one(
        self,
        call: ToolCallDirective,
        descriptor: Optional[ToolDescriptor],
        tool_ctx: ToolContext,
    ) -> tuple[Any, Optional[StepError]]:
        if descriptor is None:
            err: AgentRelayError = NotFoundError("tool", call.name)
            return None, StepError(type=err.code, message=err.message)
        if call.raw_arguments is not None:
            err = ValidationError(f"arguments for tool '{call.name}' are not a JSON object")
            return None, StepError(type=err.code, message=err.message)
        try:
            output = await self._deps.tools.invoke(descriptor.id, dict(call.arguments), ctx=tool_ctx)
        except ValidationError as e:
            return None, StepError(type=e.code, message=e.message, details=e.errors or None)
        except AgentRelayError as e:
            logger.info(f"Tool {descriptor.id} failed in run {tool_ctx.run_id}: {e.message}")
            return None, StepError(type=e.code, message=e.message)
        return to_jsonable_python(output, fallback=str), None

    async def _node_finish(self, state: _GraphState) -> _GraphState:
        """Persist the terminal status and publish the lifecycle event."""
        ctx = state["ctx"]
        status = RunStatus(state.get("_terminal_status") or RunStatus.failed.value)
        reason_value = state.get("_failure_reason")
        error_dict = state.get("_error")
        await self._finalize(
            ctx,
            status,
            FailureReason(reason_value) if reason_value else None,
            StepError.model_validate(error_dict) if error_dict else None,
        )
        return state

    @staticmethod
    def _terminate(
        state: _GraphState,
        status: RunStatus,
        reason: FailureReason,
        error: AgentRelayError,
    ) -> _GraphState:
        state["_finished"] = True
        state["_terminal_status"] = status.value
        state["_failure_reason"] = reason.value
        state["_error"] = {"type": error.code, "message": error.message}
        return state

    # ------------------------------------------------------------------ routes

    @staticmethod
    def _route_after_model(state: _GraphState) -> str:
        if state.get("_finished"):
            return "finish"
        if state.get("pending_calls"):
            return "tools"
        return "retry"

    @staticmethod
    def _route_after_tools(state: _GraphState) -> str:
        if state.get("_finished"):
            return "finish"
        return "continue"

