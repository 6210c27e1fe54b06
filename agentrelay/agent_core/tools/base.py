from __future__ import annotations

"""Tool protocol and invocation context.

A *tool* pairs a ``ToolDescriptor`` (what the LLM sees) with the execution
logic bound to it. The engine never calls tools directly; it goes through
``ToolRegistry.invoke`` so that arguments are validated against the
descriptor's parameter schema first.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from ..schemas.domain import ToolDescriptor


@dataclass(frozen=True)
class ToolContext:
    """Per-invocation context handed to tool implementations.

    Attributes
    ----------
    run_id:
        The ``ExecutionRun`` the call belongs to.
    user_id:
        The caller that triggered the run.
    knowledge_scope:
        The invoking agent's knowledge scope, if any.
    """

    run_id: str
    user_id: str
    knowledge_scope: Optional[str] = None


class Tool(Protocol):
    """Protocol for tool implementations."""

    descriptor: ToolDescriptor

    async def execute(self, ctx: ToolContext, *, args: Dict[str, Any]) -> Any: ...
