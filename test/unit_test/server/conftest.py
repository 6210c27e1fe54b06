from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncGenerator, Dict, List, Union

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from agentrelay.agent_core.llm import LLMRequest, LLMResponse
from agentrelay.server.auth import CurrentUser, StaticTokenVerifier
from agentrelay.server.core.config import Settings
from agentrelay.server.services.platform import PlatformService

TOKENS = {
    "alice-token": CurrentUser(id="alice", email="alice@example.com"),
    "bob-token": CurrentUser(id="bob", email="bob@example.com"),
    "admin-token": CurrentUser(id="root", email="root@example.com", role="admin"),
}


def auth(token: str = "alice-token") -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def alice() -> Dict[str, str]:
    return auth("alice-token")


@pytest.fixture
def bob() -> Dict[str, str]:
    return auth("bob-token")


@pytest.fixture
def admin() -> Dict[str, str]:
    return auth("admin-token")


class ScriptedLLM:
    """Replays queued responses; answers ``done`` once the queue is empty."""

    def __init__(self) -> None:
        self.script: List[Union[LLMResponse, Exception]] = []
        self.requests: List[LLMRequest] = []

    async def complete(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        item = self.script.pop(0) if self.script else LLMResponse(text="done")
        if isinstance(item, Exception):
            raise item
        return item


@dataclass
class Receiver:
    """Outbound HTTP endpoint double for webhook targets and HTTP tools."""

    requests: List[httpx.Request] = field(default_factory=list)
    status_code: int = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"ok": True})


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def receiver() -> Receiver:
    return Receiver()


@pytest_asyncio.fixture
async def platform(sql_repos, llm: ScriptedLLM, receiver: Receiver) -> AsyncGenerator[PlatformService, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(receiver)) as http_client:
        platform = PlatformService(
            repos=sql_repos,
            llm=llm,
            http_client=http_client,
            settings=Settings(_env_file=None),
        )
        yield platform
        await platform.shutdown()


@pytest_asyncio.fixture(name="client")
async def client_fixture(platform: PlatformService) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to an app wired with the test platform."""
    from agentrelay.server.main import create_app

    app = create_app(platform=platform, verifier=StaticTokenVerifier(TOKENS))
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as client:
        yield client
