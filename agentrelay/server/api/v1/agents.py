"""
Agents API Endpoints.

This module provides agent management and the agent execution interface:

- Agent CRUD (owner-scoped; public agents are visible to everyone)
- Agent clone, export and import
- Per-agent run analytics from the execution log
- Agent invocation, synchronous or in the background
- Run status and cancellation
- Paginated execution logs
- Real-time run progress via Server-Sent Events (SSE)
"""

import json
from typing import List, Literal, Optional

from fastapi import APIRouter, Query, Request, Response
from sse_starlette.sse import EventSourceResponse

from agentrelay.agent_core.schemas.domain import AgentExport, RunStatus
from agentrelay.core.logging_config import get_logger
from agentrelay.server.auth import CurrentUserDep
from agentrelay.server.realtime import SSE_EVENT_NAMES
from agentrelay.server.schemas import (
    AgentAnalyticsOut,
    AgentCloneIn,
    AgentCreate,
    AgentOut,
    AgentUpdate,
    CancelOut,
    RunOut,
    RunRequest,
    StepPageOut,
)
from agentrelay.server.services.deps import PlatformDep

logger = get_logger(__name__)
router = APIRouter()


# =====================================================================
# Agent CRUD
# =====================================================================


@router.post("/", response_model=AgentOut, status_code=201, summary="Create Agent")
async def create_agent(agent_in: AgentCreate, platform: PlatformDep, user: CurrentUserDep):
    agent = await platform.create_agent(user.id, **agent_in.model_dump())
    return AgentOut.from_domain(agent)


@router.get(
    "/",
    response_model=List[AgentOut],
    summary="List Agents",
    description="List the caller's agents and all public agents.",
)
async def list_agents(platform: PlatformDep, user: CurrentUserDep):
    return [AgentOut.from_domain(a) for a in await platform.list_agents(user.id)]


@router.get("/{agent_id}", response_model=AgentOut, summary="Get Agent")
async def get_agent(agent_id: str, platform: PlatformDep, user: CurrentUserDep):
    return AgentOut.from_domain(await platform.get_agent(agent_id, user.id))


@router.put("/{agent_id}", response_model=AgentOut, summary="Update Agent")
async def update_agent(agent_id: str, agent_in: AgentUpdate, platform: PlatformDep, user: CurrentUserDep):
    agent = await platform.update_agent(agent_id, user.id, agent_in.model_dump(exclude_none=True))
    return AgentOut.from_domain(agent)


@router.delete("/{agent_id}", status_code=204, summary="Delete Agent")
async def delete_agent(agent_id: str, platform: PlatformDep, user: CurrentUserDep):
    await platform.delete_agent(agent_id, user.id)
    return Response(status_code=204)


# =====================================================================
# Clone, export/import and analytics
# =====================================================================


@router.post(
    "/import",
    response_model=AgentOut,
    status_code=201,
    summary="Import Agent",
    description="Create a private agent for the caller from an exported definition.",
)
async def import_agent(document: AgentExport, platform: PlatformDep, user: CurrentUserDep):
    return AgentOut.from_domain(await platform.import_agent(user.id, document))


@router.get("/{agent_id}/export", response_model=AgentExport, summary="Export Agent")
async def export_agent(agent_id: str, platform: PlatformDep, user: CurrentUserDep):
    return await platform.export_agent(agent_id, user.id)


@router.post(
    "/{agent_id}/clone",
    response_model=AgentOut,
    status_code=201,
    summary="Clone Agent",
    description="Copy an agent visible to the caller into a new private agent they own.",
)
async def clone_agent(
    agent_id: str, platform: PlatformDep, user: CurrentUserDep, clone_in: Optional[AgentCloneIn] = None
):
    agent = await platform.clone_agent(agent_id, user.id, name=clone_in.name if clone_in else None)
    return AgentOut.from_domain(agent)


@router.get(
    "/{agent_id}/analytics",
    response_model=AgentAnalyticsOut,
    summary="Agent Analytics",
    description=(
        "Run counts per status, success and failure rates, runs per day and mean duration over the "
        "timeframe. Owners see every user's runs; others see only their own."
    ),
)
async def agent_analytics(
    agent_id: str,
    platform: PlatformDep,
    user: CurrentUserDep,
    timeframe: Literal["day", "week", "month", "year", "all"] = Query(default="week"),
):
    agent, stats = await platform.agent_analytics(agent_id, user.id, timeframe=timeframe)
    return AgentAnalyticsOut.from_stats(agent, timeframe, stats)


# =====================================================================
# Execution
# =====================================================================


@router.post(
    "/{agent_id}/run",
    response_model=RunOut,
    summary="Run Agent",
    description=(
        "Execute the agent with the given input. With wait=true (default) the terminal run is "
        "returned with all its steps; with wait=false the run starts in the background and "
        "progress is available on the run's stream."
    ),
)
async def run_agent(
    agent_id: str,
    run_in: RunRequest,
    platform: PlatformDep,
    user: CurrentUserDep,
    response: Response,
    wait: bool = Query(default=True),
):
    logger.info(f"User {user.id} running agent {agent_id} (wait={wait})")
    run = await platform.run_agent(agent_id, user.id, run_in.input, wait=wait)
    if not wait:
        response.status_code = 202
    return RunOut.from_domain(run)


@router.get("/{agent_id}/runs/{run_id}", response_model=RunOut, summary="Get Run")
async def get_run(agent_id: str, run_id: str, platform: PlatformDep, user: CurrentUserDep):
    return RunOut.from_domain(await platform.get_run(agent_id, run_id, user.id))


@router.post(
    "/{agent_id}/runs/{run_id}/cancel",
    response_model=CancelOut,
    summary="Cancel Run",
    description="Request cancellation; it takes effect at the next loop boundary of the run.",
)
async def cancel_run(agent_id: str, run_id: str, platform: PlatformDep, user: CurrentUserDep):
    cancelled = await platform.cancel_run(agent_id, run_id, user.id)
    return CancelOut(run_id=run_id, cancelled=cancelled)


@router.get(
    "/{agent_id}/logs",
    response_model=StepPageOut,
    summary="Execution Logs",
    description="Page through the execution steps of the agent's runs in append order.",
)
async def list_logs(
    agent_id: str,
    platform: PlatformDep,
    user: CurrentUserDep,
    user_id: Optional[str] = Query(default=None, alias="userId"),
    cursor: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
):
    page = await platform.list_logs(agent_id, user.id, user_id=user_id, cursor=cursor, limit=limit)
    return StepPageOut(steps=list(page.steps), next_cursor=page.next_cursor)


@router.get(
    "/{agent_id}/runs/{run_id}/stream",
    summary="Stream Run Progress",
    description="Subscribe to a Server-Sent Events (SSE) stream of a run's progress.",
    response_description="A stream of agent:stream / agent:complete / agent:error events.",
)
async def stream_run(agent_id: str, run_id: str, request: Request, platform: PlatformDep, user: CurrentUserDep):
    """
    Stream the progress of a run.

    Each executed step is sent as an ``agent:stream`` event; the stream ends
    with ``agent:complete`` or ``agent:error``. Connecting to a run that has
    already finished yields only its terminal event.
    """
    # subscribe before reading the run so no terminal event falls in between
    queue = platform.stream_hub.subscribe(run_id)
    try:
        run = await platform.get_run(agent_id, run_id, user.id)
    except Exception:
        platform.stream_hub.unsubscribe(run_id, queue)
        raise
    logger.info(f"Starting progress stream for run: {run_id}")

    async def event_generator():
        try:
            if run.is_terminal:
                name = SSE_EVENT_NAMES["completed" if run.status == RunStatus.succeeded else "failed"]
                yield {"event": name, "data": RunOut.from_domain(run).model_dump_json()}
                return
            async for event in platform.stream_hub.iterate(run_id, queue):
                if await request.is_disconnected():
                    logger.info(f"Client disconnected from run stream: {run_id}")
                    break
                yield {
                    "event": SSE_EVENT_NAMES.get(event.kind, "agent:stream"),
                    "data": json.dumps({"run_id": event.run_id, "kind": event.kind, "data": event.data}, default=str),
                }
        finally:
            platform.stream_hub.unsubscribe(run_id, queue)

    return EventSourceResponse(event_generator())
