from __future__ import annotations

"""Tool registry.

The registry maps a tool id to an executable tool implementation.

The runtime engine uses this registry to resolve an agent's ``tool_ids`` into
descriptors for the LLM request and to invoke tools named in the LLM's
tool-call directives.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from ...core.errors import AgentRelayError, ExecutionError, NotFoundError, ValidationError
from ..schemas.domain import ToolDescriptor
from .base import Tool, ToolContext

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    In-memory mapping of tool ids to implementations.

    Notes:
        - ``register`` overwrites any existing mapping for the tool id.
        - ``resolve`` raises ``NotFoundError`` if the tool is missing.
        - ``invoke`` validates arguments before running the bound logic and
          wraps any failure of that logic in ``ExecutionError``.
    """

    def __init__(self, *, timeout_seconds: float = 30.0) -> None:
        self._tools: Dict[str, Tool] = {}
        self._timeout_seconds = timeout_seconds

    def register(self, tool: Tool) -> None:
        self._tools[tool.descriptor.id] = tool

    def has(self, tool_id: str) -> bool:
        return tool_id in self._tools

    def resolve(self, tool_id: str) -> ToolDescriptor:
        """
        Retrieve the descriptor of a registered tool.

        Raises:
            NotFoundError: If no tool is registered with the given id.
        """
        tool = self._tools.get(tool_id)
        if tool is None:
            raise NotFoundError("tool", tool_id)
        return tool.descriptor

    def list(self) -> List[ToolDescriptor]:
        return [t.descriptor for t in self._tools.values()]

    async def invoke(self, tool_id: str, arguments: Dict[str, Any], *, ctx: Optional[ToolContext] = None) -> Any:
        """
        Validate ``arguments`` and execute the tool bound to ``tool_id``.

        Args:
            tool_id: Registered tool id.
            arguments: Call arguments as decoded from the LLM's directive.
            ctx: Invocation context; a blank one is used when omitted.

        Returns:
            Whatever the bound logic returns (JSON-serializable).

        Raises:
            NotFoundError: Unknown tool id.
            ValidationError: Arguments do not match the parameter schema.
            ExecutionError: The bound logic raised or timed out.
        """
        tool = self._tools.get(tool_id)
        if tool is None:
            raise NotFoundError("tool", tool_id)
        descriptor = tool.descriptor

        problems = descriptor.parameters.validate_value(arguments)
        if problems:
            raise ValidationError(f"invalid arguments for tool '{descriptor.name}'", errors=problems)

        timeout = self._timeout_seconds
        if descriptor.binding.kind == "http" and descriptor.binding.timeout_seconds is not None:
            timeout = descriptor.binding.timeout_seconds

        ctx = ctx or ToolContext(run_id="", user_id="")
        try:
            return await asyncio.wait_for(tool.execute(ctx, args=arguments), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ExecutionError(f"tool '{descriptor.name}' timed out after {timeout}s") from e
        except (ExecutionError, ValidationError):
            raise
        except AgentRelayError as e:
            raise ExecutionError(f"tool '{descriptor.name}' failed: {e.message}") from e
        except Exception as e:
            logger.debug(f"Tool {descriptor.id} raised {type(e).__name__}: {e}")
            raise ExecutionError(f"tool '{descriptor.name}' failed: {e}") from e
