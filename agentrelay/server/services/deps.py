"""
Platform Dependency.

Provides the application's ``PlatformService`` (built in the lifespan and kept
on ``app.state``) to API endpoints.
"""

from typing import Annotated

from fastapi import Depends, Request

from agentrelay.server.services.platform import PlatformService


def get_platform(request: Request) -> PlatformService:
    return request.app.state.platform


PlatformDep = Annotated[PlatformService, Depends(get_platform)]
