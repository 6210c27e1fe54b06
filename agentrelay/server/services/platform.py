"""
Platform Service.

``PlatformService`` is the application-level wiring of agentrelay. It owns
the Event Bus and connects its producers (the agent engine, workflow reports)
to its consumers (the webhook dispatcher, the real-time stream hub), and it
exposes the caller-scoped operations used by the API routers.

Core components receive plain data objects (``EngineLimits``,
``RetryPolicy``) built from ``Settings`` here; they never read settings
themselves.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple
from uuid import uuid4

import httpx

from agentrelay.agent_core.context import (
    ContextRetriever,
    ContextSource,
    HttpContextSource,
    InMemoryContextSource,
)
from agentrelay.agent_core.llm import LLMClient
from agentrelay.agent_core.runtime import AgentEngine, EngineDeps
from agentrelay.agent_core.schemas.domain import (
    Agent,
    AgentExport,
    ExecutionRun,
    HttpBinding,
    ModelParameters,
    ToolDescriptor,
)
from agentrelay.agent_core.tools import HttpTool, Tool, ToolRegistry, builtin_tools
from agentrelay.core.errors import NotFoundError, ValidationError
from agentrelay.core.logging_config import get_logger
from agentrelay.events import Event, EventBus, EventType
from agentrelay.repos.interfaces import (
    AgentRepository,
    DeliveryAttemptRepository,
    ExecutionLogRepository,
    RunStats,
    StepPage,
    WebhookRepository,
)
from agentrelay.server.core.config import Settings
from agentrelay.server.realtime import RunStreamHub
from agentrelay.webhooks import WebhookDispatcher, WebhookService

logger = get_logger(__name__)

# analytics windows ending now; "all" has no lower bound
ANALYTICS_WINDOWS: Dict[str, Optional[timedelta]] = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
    "all": None,
}


class RepoBundle(Protocol):
    agents: AgentRepository
    logs: ExecutionLogRepository
    webhooks: WebhookRepository
    deliveries: DeliveryAttemptRepository


class PlatformService:
    """
    Service layer for agents, runs, execution logs, tools and webhooks.

    Ownership rules:

    - Agents are managed by their owner only; public agents are visible and
      runnable by everyone.
    - A run is visible to the user who triggered it and to the agent owner.
    - Execution logs of a public agent are restricted to the caller's own
      runs unless the caller owns the agent.
    """

    def __init__(
        self,
        *,
        repos: RepoBundle,
        llm: LLMClient,
        http_client: httpx.AsyncClient,
        settings: Settings,
        context_source: Optional[ContextSource] = None,
        extra_tools: Iterable[Tool] = (),
    ) -> None:
        self.repos = repos
        self.settings = settings
        self.http_client = http_client
        self.bus = EventBus()

        if context_source is None:
            if settings.knowledge.search_url:
                context_source = HttpContextSource(
                    http_client,
                    settings.knowledge.search_url,
                    timeout=settings.engine.retrieval_timeout_seconds,
                )
            else:
                context_source = InMemoryContextSource()
        self.context_source = context_source
        self.retriever = ContextRetriever(
            context_source,
            max_results=settings.engine.context_limit,
            max_total_chars=settings.engine.context_max_chars,
        )

        self.tools = ToolRegistry(timeout_seconds=settings.engine.tool_timeout_seconds)
        for tool in builtin_tools(client=http_client, retriever=self.retriever):
            self.tools.register(tool)
        for tool in extra_tools:
            self.tools.register(tool)

        self.engine = AgentEngine(
            deps=EngineDeps(
                agents=repos.agents,
                logs=repos.logs,
                tools=self.tools,
                llm=llm,
                bus=self.bus,
                retriever=self.retriever,
            ),
            limits=settings.engine.to_limits(),
        )

        self.dispatcher = WebhookDispatcher(
            webhooks=repos.webhooks,
            attempts=repos.deliveries,
            client=http_client,
            retry_policy=settings.webhook.to_retry_policy(),
            timeout_seconds=settings.webhook.timeout_seconds,
            headers=settings.webhook.to_headers(),
        )
        self.dispatcher.attach(self.bus)
        self.webhooks = WebhookService(
            webhooks=repos.webhooks,
            deliveries=repos.deliveries,
            dispatcher=self.dispatcher,
        )

        self.stream_hub = RunStreamHub()
        self.stream_hub.attach(self.bus)

    # ------------------------------------------------------------------ tools

    def list_tools(self) -> List[ToolDescriptor]:
        return self.tools.list()

    def register_http_tool(self, descriptor: ToolDescriptor) -> ToolDescriptor:
        """Register a tool bound to an external HTTP endpoint."""
        if not isinstance(descriptor.binding, HttpBinding):
            raise ValidationError("only HTTP-bound tools can be registered at runtime")
        if self.tools.has(descriptor.id):
            raise ValidationError(f"tool '{descriptor.id}' is already registered")
        self.tools.register(HttpTool(descriptor=descriptor, client=self.http_client))
        logger.info(f"Registered HTTP tool {descriptor.id} -> {descriptor.binding.url}")
        return descriptor

    def _check_tool_ids(self, tool_ids: List[str]) -> None:
        unknown = [t for t in tool_ids if not self.tools.has(t)]
        if unknown:
            raise ValidationError("unknown tool ids", errors=[f"tool_ids: '{t}' is not registered" for t in unknown])

    # ----------------------------------------------------------------- agents

    async def create_agent(
        self,
        owner_id: str,
        *,
        name: str,
        description: str = "",
        system_prompt: str = "",
        tool_ids: Optional[List[str]] = None,
        knowledge_scope: Optional[str] = None,
        model_parameters: Optional[ModelParameters] = None,
        is_public: bool = False,
    ) -> Agent:
        tool_ids = list(dict.fromkeys(tool_ids or []))
        self._check_tool_ids(tool_ids)
        agent = Agent(
            owner_id=owner_id,
            name=name,
            description=description,
            system_prompt=system_prompt,
            tool_ids=tool_ids,
            knowledge_scope=knowledge_scope,
            model_parameters=model_parameters or ModelParameters(),
            is_public=is_public,
        )
        await self.repos.agents.create(agent)
        logger.info(f"Created agent {agent.id} for owner {owner_id}")
        return agent

    async def list_agents(self, user_id: str) -> List[Agent]:
        return await self.repos.agents.list(user_id, include_public=True)

    async def get_agent(self, agent_id: str, user_id: str) -> Agent:
        agent = await self.repos.agents.get(agent_id)
        if agent is None or not agent.visible_to(user_id):
            raise NotFoundError("agent", agent_id)
        return agent

    async def _owned_agent(self, agent_id: str, user_id: str) -> Agent:
        agent = await self.repos.agents.get(agent_id)
        if agent is None or agent.owner_id != user_id:
            raise NotFoundError("agent", agent_id)
        return agent

    async def update_agent(self, agent_id: str, user_id: str, changes: Dict[str, Any]) -> Agent:
        """Apply ``changes`` (fields set to ``None`` are ignored) to an owned agent."""
        current = await self._owned_agent(agent_id, user_id)
        changes = {k: v for k, v in changes.items() if v is not None}
        if "tool_ids" in changes:
            changes["tool_ids"] = list(dict.fromkeys(changes["tool_ids"]))
            self._check_tool_ids(changes["tool_ids"])
        if isinstance(changes.get("model_parameters"), dict):
            changes["model_parameters"] = ModelParameters.model_validate(changes["model_parameters"])
        updated = current.model_copy(update={**changes, "updated_at": datetime.now(timezone.utc)})
        await self.repos.agents.update(updated)
        return updated

    async def delete_agent(self, agent_id: str, user_id: str) -> None:
        await self._owned_agent(agent_id, user_id)
        await self.repos.agents.delete(agent_id)
        logger.info(f"Deleted agent {agent_id}")

    async def clone_agent(self, agent_id: str, user_id: str, *, name: Optional[str] = None) -> Agent:
        """Copy a visible agent into a new private agent owned by ``user_id``."""
        source = await self.get_agent(agent_id, user_id)
        clone = await self.import_agent(
            user_id, AgentExport.from_agent(source).model_copy(update={"name": name or f"{source.name} (copy)"})
        )
        logger.info(f"Cloned agent {source.id} into {clone.id}")
        return clone

    async def export_agent(self, agent_id: str, user_id: str) -> AgentExport:
        return AgentExport.from_agent(await self.get_agent(agent_id, user_id))

    async def import_agent(self, user_id: str, document: AgentExport) -> Agent:
        """Create a private agent for ``user_id`` from an exported definition.

        Raises:
            ValidationError: The definition names tools this deployment does
                not have.
        """
        return await self.create_agent(
            user_id,
            name=document.name,
            description=document.description,
            system_prompt=document.system_prompt,
            tool_ids=document.tool_ids,
            knowledge_scope=document.knowledge_scope,
            model_parameters=document.model_parameters,
        )

    async def agent_analytics(self, agent_id: str, user_id: str, *, timeframe: str = "week") -> Tuple[Agent, RunStats]:
        """Aggregate the agent's runs over ``timeframe``; non-owners only see their own runs."""
        if timeframe not in ANALYTICS_WINDOWS:
            raise ValidationError(f"unknown timeframe '{timeframe}'", errors=[f"timeframe: one of {list(ANALYTICS_WINDOWS)}"])
        agent = await self.get_agent(agent_id, user_id)
        window = ANALYTICS_WINDOWS[timeframe]
        since = datetime.now(timezone.utc) - window if window is not None else None
        scope = None if agent.owner_id == user_id else user_id
        return agent, await self.repos.logs.run_stats(agent.id, user_id=scope, since=since)

    # ------------------------------------------------------------------- runs

    async def run_agent(self, agent_id: str, user_id: str, input: str, *, wait: bool = True) -> ExecutionRun:
        """
        Execute an agent for ``user_id``.

        With ``wait`` the terminal run is returned; otherwise the run is started
        in the background and its pending snapshot is returned immediately.
        """
        if wait:
            return await self.engine.run(agent_id, user_id, input)
        return await self.engine.start(agent_id, user_id, input)

    async def get_run(self, agent_id: str, run_id: str, user_id: str) -> ExecutionRun:
        agent = await self.get_agent(agent_id, user_id)
        run = await self.repos.logs.get(run_id)
        if run is None or run.agent_id != agent.id:
            raise NotFoundError("run", run_id)
        if run.user_id != user_id and agent.owner_id != user_id:
            raise NotFoundError("run", run_id)
        return run

    async def cancel_run(self, agent_id: str, run_id: str, user_id: str) -> bool:
        await self.get_run(agent_id, run_id, user_id)
        return self.engine.cancel(run_id)

    async def list_logs(
        self,
        agent_id: str,
        caller_id: str,
        *,
        user_id: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> StepPage:
        agent = await self.get_agent(agent_id, caller_id)
        if agent.owner_id != caller_id:
            user_id = caller_id
        return await self.repos.logs.list_steps(agent.id, user_id=user_id, cursor=cursor, limit=limit)

    # -------------------------------------------------------------- workflows

    async def publish_workflow_event(
        self,
        workflow_id: str,
        user_id: str,
        *,
        status: str,
        data: Optional[Dict[str, Any]] = None,
        execution_id: Optional[str] = None,
    ) -> Event:
        """Publish ``workflow.completed`` / ``workflow.failed`` for a reported workflow execution."""
        event_type = EventType.workflow_completed if status == "completed" else EventType.workflow_failed
        # re-reports of one execution share a key; reports without an execution id never do
        report_id = execution_id or f"{workflow_id}:{uuid4()}"
        event = Event.for_source(
            event_type,
            source_id=report_id,
            owner_id=user_id,
            payload={
                "workflow_id": workflow_id,
                "execution_id": execution_id,
                "user_id": user_id,
                "status": status,
                "data": dict(data or {}),
            },
        )
        await self.bus.publish(event)
        logger.info(f"Published {event_type.value} for workflow {workflow_id}")
        return event

    # -------------------------------------------------------------- lifecycle

    async def shutdown(self) -> None:
        """Wait for background runs and in-flight event handlers."""
        await self.engine.drain()
        await self.bus.drain()
