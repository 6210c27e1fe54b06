"""LLM client boundary and the Pydantic AI implementation."""

from .base import ChatMessage, LLMClient, LLMRequest, LLMResponse, ToolCallDirective, ToolDeclaration
from .pydantic_ai_client import PydanticAIClient

__all__ = [
    "ChatMessage",
    "LLMClient",
    "LLMRequest",
    "LLMResponse",
    "ToolCallDirective",
    "ToolDeclaration",
    "PydanticAIClient",
]
