from __future__ import annotations

"""Tools bound to an external HTTP endpoint (``HttpBinding``)."""

from dataclasses import dataclass
from typing import Any, Dict

import httpx

from ...core.errors import ExecutionError
from ..schemas.domain import HttpBinding, ToolDescriptor
from .base import ToolContext


@dataclass(frozen=True)
class HttpTool:
    """
    Invoke a tool by calling its HTTP endpoint.

    ``POST`` bindings send the arguments as a JSON body; ``GET`` bindings send
    them as query parameters. A JSON response is returned decoded, anything
    else as ``{"text": ...}``.
    """

    descriptor: ToolDescriptor
    client: httpx.AsyncClient

    async def execute(self, ctx: ToolContext, *, args: Dict[str, Any]) -> Any:
        binding = self.descriptor.binding
        if not isinstance(binding, HttpBinding):
            raise ExecutionError(f"tool '{self.descriptor.name}' is not bound to an HTTP endpoint")

        headers = dict(binding.headers)
        headers.setdefault("X-Agent-Run-ID", ctx.run_id)
        try:
            if binding.method == "GET":
                resp = await self.client.get(binding.url, params=args, headers=headers)
            else:
                resp = await self.client.post(binding.url, json=args, headers=headers)
        except httpx.HTTPError as e:
            raise ExecutionError(f"tool '{self.descriptor.name}' request failed: {e}") from e

        if resp.status_code >= 400:
            raise ExecutionError(f"tool '{self.descriptor.name}' returned HTTP {resp.status_code}")
        if resp.headers.get("content-type", "").startswith("application/json"):
            return resp.json()
        return {"text": resp.text}
