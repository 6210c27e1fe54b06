"""Pydantic AI adapter for the ``LLMClient`` protocol.

This module translates ``LLMRequest`` into Pydantic AI message history and
function-tool definitions and sends it with ``pydantic_ai.direct.model_request``
so that a single model round-trip happens per call. Pydantic AI never runs its
own tool loop here; the engine does.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic_ai import ModelSettings
from pydantic_ai.direct import model_request
from pydantic_ai.exceptions import ModelHTTPError, UserError
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelRequestPart,
    ModelResponse,
    ModelResponsePart,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models import Model, ModelRequestParameters
from pydantic_ai.tools import ToolDefinition

from ...core.errors import FatalProviderError
from .base import LLMRequest, LLMResponse, ToolCallDirective

logger = logging.getLogger(__name__)

# auth failures and quota exhaustion cannot be recovered by retrying the loop
FATAL_STATUS_CODES = frozenset({401, 403, 429})

# pydantic-ai wraps arguments it cannot decode under this key
INVALID_JSON_KEY = "INVALID_JSON"


def to_model_messages(request: LLMRequest) -> List[ModelMessage]:
    """Convert the provider-neutral conversation into Pydantic AI messages.

    Consecutive tool results are grouped into a single ``ModelRequest`` so
    they directly follow the ``ModelResponse`` that asked for them.
    """
    messages: List[ModelMessage] = []
    pending: List[ModelRequestPart] = []
    if request.system_prompt:
        pending.append(SystemPromptPart(content=request.system_prompt))

    for msg in request.messages:
        if msg.role == "assistant":
            if pending:
                messages.append(ModelRequest(parts=pending))
                pending = []
            parts: List[ModelResponsePart] = []
            if msg.content:
                parts.append(TextPart(content=msg.content))
            for call in msg.tool_calls:
                parts.append(ToolCallPart(tool_name=call.name, args=dict(call.arguments), tool_call_id=call.call_id))
            messages.append(ModelResponse(parts=parts))
        elif msg.role == "tool":
            pending.append(
                ToolReturnPart(tool_name=msg.tool_name or "", content=msg.content, tool_call_id=msg.call_id or "")
            )
        else:
            pending.append(UserPromptPart(content=msg.content))

    if pending:
        messages.append(ModelRequest(parts=pending))
    return messages


def _parse_call_arguments(part: ToolCallPart) -> tuple[Dict[str, Any], Optional[str]]:
    """Return ``(arguments, raw_arguments)`` for a tool call part.

    ``raw_arguments`` is set only when the model sent something that is not a
    JSON object; ``arguments`` is then empty.
    """
    args = part.args
    if args is None or args == "":
        return {}, None
    if isinstance(args, dict):
        if INVALID_JSON_KEY in args and len(args) == 1:
            return {}, str(args[INVALID_JSON_KEY])
        return dict(args), None
    try:
        parsed = json.loads(args)
    except ValueError:
        return {}, args
    if not isinstance(parsed, dict):
        return {}, args
    return parsed, None


def from_model_response(response: ModelResponse) -> LLMResponse:
    texts: List[str] = []
    calls: List[ToolCallDirective] = []
    for part in response.parts:
        if isinstance(part, TextPart):
            texts.append(part.content)
        elif isinstance(part, ToolCallPart):
            args, raw = _parse_call_arguments(part)
            calls.append(ToolCallDirective(call_id=part.tool_call_id, name=part.tool_name, arguments=args, raw_arguments=raw))
    text = "".join(texts) if texts else None
    return LLMResponse(text=text, tool_calls=calls, model=response.model_name)


class PydanticAIClient:
    """
    ``LLMClient`` backed by any Pydantic AI model.

    Args:
        model: A Pydantic AI ``Model`` instance or a ``"provider:model"`` name
            such as ``"openai:gpt-4o"``. A per-request ``LLMRequest.model``
            overrides it.
        temperature: Default sampling temperature.
        max_tokens: Default completion token limit.
    """

    def __init__(
        self,
        model: Union[Model, str],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> None:
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    def _settings(self, request: LLMRequest) -> ModelSettings:
        settings = ModelSettings()
        temperature = request.temperature if request.temperature is not None else self._temperature
        max_tokens = request.max_tokens if request.max_tokens is not None else self._max_tokens
        if temperature is not None:
            settings["temperature"] = temperature
        if max_tokens is not None:
            settings["max_tokens"] = max_tokens
        return settings

    async def complete(self, request: LLMRequest) -> LLMResponse:
        params = ModelRequestParameters(
            function_tools=[
                ToolDefinition(name=t.name, description=t.description, parameters_json_schema=t.parameters)
                for t in request.tools
            ],
            allow_text_output=True,
        )
        model = request.model or self._model
        try:
            response = await model_request(
                model,
                to_model_messages(request),
                model_settings=self._settings(request),
                model_request_parameters=params,
            )
        except ModelHTTPError as e:
            if e.status_code in FATAL_STATUS_CODES:
                raise FatalProviderError(f"LLM provider rejected the request ({e.status_code}): {e.message}") from e
            raise
        except UserError as e:
            # raised for missing credentials or an unknown model name
            raise FatalProviderError(f"LLM provider misconfigured: {e}") from e

        logger.debug(f"LLM response: {len(response.parts)} parts from {response.model_name}")
        return from_model_response(response)
