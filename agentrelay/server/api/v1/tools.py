"""
Tool Catalogue API Endpoints.

Lists the tools agents can reference in ``tool_ids`` and lets administrators
register tools bound to an external HTTP endpoint.
"""

from typing import List

from fastapi import APIRouter, HTTPException

from agentrelay.agent_core.schemas.domain import ToolDescriptor
from agentrelay.core.logging_config import get_logger
from agentrelay.server.auth import CurrentUserDep
from agentrelay.server.services.deps import PlatformDep

logger = get_logger(__name__)
router = APIRouter()


@router.get(
    "/",
    response_model=List[ToolDescriptor],
    summary="List Tools",
    description="List the registered tools with their parameter schemas.",
)
async def list_tools(platform: PlatformDep, user: CurrentUserDep):
    return platform.list_tools()


@router.post(
    "/",
    response_model=ToolDescriptor,
    status_code=201,
    summary="Register HTTP Tool",
    description="Register a tool bound to an external HTTP endpoint (admin only).",
)
async def register_tool(descriptor: ToolDescriptor, platform: PlatformDep, user: CurrentUserDep):
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Only administrators can register tools")
    logger.info(f"User {user.id} registering tool {descriptor.id}")
    return platform.register_http_tool(descriptor)
