from __future__ import annotations

"""Provider-neutral LLM boundary.

The engine owns the tool-calling loop, so the LLM client is a single
request/response call: the engine sends the full conversation plus the tool
declarations, the client returns either text (a final answer) or tool-call
directives.
"""

from typing import Any, Dict, List, Literal, Optional, Protocol

from pydantic import Field

from ..schemas.base import BaseSchema


class ToolDeclaration(BaseSchema):
    """Function-calling declaration: ``{name, description, parameters}``."""

    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class ToolCallDirective(BaseSchema):
    call_id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    # set only when the provider sent arguments that are not a JSON object
    raw_arguments: Optional[str] = None


class ChatMessage(BaseSchema):
    role: Literal["user", "assistant", "tool"]
    content: str = ""
    tool_calls: List[ToolCallDirective] = Field(default_factory=list)
    call_id: Optional[str] = None
    tool_name: Optional[str] = None


class LLMRequest(BaseSchema):
    system_prompt: str = ""
    messages: List[ChatMessage] = Field(default_factory=list)
    tools: List[ToolDeclaration] = Field(default_factory=list)
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


class LLMResponse(BaseSchema):
    text: Optional[str] = None
    tool_calls: List[ToolCallDirective] = Field(default_factory=list)
    model: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return not self.tool_calls


class LLMClient(Protocol):
    """
    Protocol for LLM provider clients.

    Implementations raise ``FatalProviderError`` for failures that must abort
    the run (authentication, quota, misconfiguration); any other exception is
    treated as a recoverable failure of that single request.
    """

    async def complete(self, request: LLMRequest) -> LLMResponse: ...
