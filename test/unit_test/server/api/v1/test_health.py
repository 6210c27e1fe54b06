import pytest
from httpx import AsyncClient

from agentrelay import __version__

# Mark all tests in this module as async
pytestmark = pytest.mark.asyncio


async def test_health_check(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "active_runs": 0}


async def test_version(client: AsyncClient):
    response = await client.get("/version")
    assert response.status_code == 200
    data = response.json()
    assert data["version"] == __version__
    assert data["schema_version"] == "v1"


async def test_health_needs_no_token(client: AsyncClient):
    response = await client.get("/health", headers={"Authorization": "Bearer nonsense"})
    assert response.status_code == 200
