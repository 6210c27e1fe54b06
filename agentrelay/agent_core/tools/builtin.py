from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

import httpx

from ...core.errors import ExecutionError
from ..context import ContextRetriever
from ..schemas.domain import BuiltinBinding, ToolDescriptor
from ..schemas.parameters import parse_parameter_schema
from .base import Tool, ToolContext

_FETCH_MAX_CHARS = 20000


def _builtin(tool_id: str, description: str, parameters: Dict[str, Any]) -> ToolDescriptor:
    return ToolDescriptor(
        id=tool_id,
        name=tool_id,
        description=description,
        parameters=parse_parameter_schema(parameters),
        binding=BuiltinBinding(handler=tool_id),
    )


@dataclass(frozen=True)
class CurrentTimeTool:
    """Return the current UTC time in ISO-8601 format."""

    descriptor: ToolDescriptor = field(
        default_factory=lambda: _builtin("current_time", "Get the current date and time in UTC.", {})
    )

    async def execute(self, ctx: ToolContext, *, args: Dict[str, Any]) -> Any:
        return {"utc": datetime.now(timezone.utc).isoformat()}


@dataclass(frozen=True)
class WebFetchTool:
    """
    Fetch the content of a web page.

    The response body is truncated so a single fetch cannot blow up the next
    LLM request.
    """

    client: httpx.AsyncClient
    descriptor: ToolDescriptor = field(
        default_factory=lambda: _builtin(
            "web_fetch",
            "Fetch the text content of a web page by URL.",
            {
                "type": "object",
                "properties": {"url": {"type": "string", "description": "Absolute http(s) URL"}},
                "required": ["url"],
                "additionalProperties": False,
            },
        )
    )

    async def execute(self, ctx: ToolContext, *, args: Dict[str, Any]) -> Any:
        url = str(args.get("url") or "").strip()
        if not url.startswith(("http://", "https://")):
            raise ExecutionError(f"unsupported url: '{url}'")
        try:
            resp = await self.client.get(url, follow_redirects=True)
        except httpx.HTTPError as e:
            raise ExecutionError(f"fetch failed: {e}") from e
        if resp.status_code >= 400:
            raise ExecutionError(f"fetch returned HTTP {resp.status_code}")
        text = resp.text
        return {"url": url, "status": resp.status_code, "content": text[:_FETCH_MAX_CHARS], "truncated": len(text) > _FETCH_MAX_CHARS}


@dataclass(frozen=True)
class KnowledgeSearchTool:
    """Search the invoking agent's knowledge scope through the ``ContextRetriever``."""

    retriever: ContextRetriever
    descriptor: ToolDescriptor = field(
        default_factory=lambda: _builtin(
            "knowledge_search",
            "Search the agent's knowledge base for documents relevant to a query.",
            {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "minLength": 1},
                    "limit": {"type": "integer", "minimum": 1, "maximum": 20},
                },
                "required": ["query"],
                "additionalProperties": False,
            },
        )
    )

    async def execute(self, ctx: ToolContext, *, args: Dict[str, Any]) -> Any:
        if ctx.knowledge_scope is None:
            return {"results": []}
        docs = await self.retriever.retrieve(str(args["query"]), ctx.knowledge_scope, args.get("limit"))
        return {"results": [{"document_id": d.document_id, "content": d.content, "score": d.score} for d in docs]}


def builtin_tools(*, client: httpx.AsyncClient, retriever: ContextRetriever) -> List[Tool]:
    return [CurrentTimeTool(), WebFetchTool(client=client), KnowledgeSearchTool(retriever=retriever)]
