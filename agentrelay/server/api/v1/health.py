"""
Service Status Endpoints.

Unauthenticated liveness and version probes for the agentrelay API. The
health response also reports how many agent runs this process is executing,
which is what a deployment should wait on before stopping an instance.
"""

from fastapi import APIRouter

from agentrelay import __version__
from agentrelay.server.services.deps import PlatformDep

router = APIRouter()

API_VERSION = "v1"


@router.get(
    "/health",
    summary="Health Check",
    description="Liveness of the API process and the number of agent runs in flight.",
)
async def health_check(platform: PlatformDep):
    return {"status": "ok", "active_runs": platform.engine.active_runs}


@router.get("/version", summary="Get Version")
async def version():
    """Package version and the API prefix version served under ``/api``."""
    return {"version": __version__, "schema_version": API_VERSION}
