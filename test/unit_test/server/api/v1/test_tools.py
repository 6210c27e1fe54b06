import json

import pytest
from httpx import AsyncClient

from agentrelay.agent_core.llm import LLMResponse, ToolCallDirective

# Mark all tests in this module as async
pytestmark = pytest.mark.asyncio

TOOLS = "/api/v1/tools"

LOOKUP = {
    "id": "lookup",
    "name": "lookup",
    "description": "Look up a customer record",
    "parameters": {
        "type": "object",
        "properties": {"customer_id": {"type": "string"}},
        "required": ["customer_id"],
    },
    "binding": {"kind": "http", "url": "http://mock-tools/lookup"},
}


async def test_list_builtin_tools(client: AsyncClient, alice):
    response = await client.get(f"{TOOLS}/", headers=alice)
    assert response.status_code == 200
    ids = {t["id"] for t in response.json()}
    assert {"current_time", "web_fetch", "knowledge_search"} <= ids


async def test_only_admins_register_tools(client: AsyncClient, alice, admin):
    response = await client.post(f"{TOOLS}/", json=LOOKUP, headers=alice)
    assert response.status_code == 403

    response = await client.post(f"{TOOLS}/", json=LOOKUP, headers=admin)
    assert response.status_code == 201
    assert response.json()["id"] == "lookup"

    response = await client.post(f"{TOOLS}/", json=LOOKUP, headers=admin)
    assert response.status_code == 422


async def test_builtin_binding_cannot_be_registered(client: AsyncClient, admin):
    body = dict(LOOKUP, id="sneaky", name="sneaky", binding={"kind": "builtin", "handler": "web_fetch"})
    response = await client.post(f"{TOOLS}/", json=body, headers=admin)
    assert response.status_code == 422


async def test_registered_tool_is_usable_by_agents(client: AsyncClient, alice, admin, llm, receiver):
    assert (await client.post(f"{TOOLS}/", json=LOOKUP, headers=admin)).status_code == 201
    agent = (await client.post("/api/v1/agents/", json={"name": "crm", "tool_ids": ["lookup"]}, headers=alice)).json()
    llm.script = [
        LLMResponse(tool_calls=[ToolCallDirective(call_id="c1", name="lookup", arguments={"customer_id": "42"})]),
        LLMResponse(text="Found it."),
    ]

    run = (await client.post(f"/api/v1/agents/{agent['id']}/run", json={"input": "who is 42?"}, headers=alice)).json()
    assert run["status"] == "succeeded"
    assert run["steps"][2]["output"] == {"ok": True}
    request = receiver.requests[0]
    assert str(request.url) == "http://mock-tools/lookup"
    assert json.loads(request.content) == {"customer_id": "42"}
    assert llm.requests[0].tools[0].name == "lookup"
