from __future__ import annotations

from typing import List

import pytest
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models.function import AgentInfo, FunctionModel

from agentrelay.agent_core.llm import (
    ChatMessage,
    LLMRequest,
    PydanticAIClient,
    ToolCallDirective,
    ToolDeclaration,
)
from agentrelay.agent_core.llm.pydantic_ai_client import from_model_response, to_model_messages
from agentrelay.core.errors import FatalProviderError

WEATHER = ToolDeclaration(
    name="get_weather",
    description="Weather for a city",
    parameters={"type": "object", "properties": {"city": {"type": "string"}}, "required": ["city"]},
)


def _conversation() -> LLMRequest:
    return LLMRequest(
        system_prompt="You are helpful.",
        messages=[
            ChatMessage(role="user", content="Weather in Oslo?"),
            ChatMessage(
                role="assistant",
                content="",
                tool_calls=[ToolCallDirective(call_id="c1", name="get_weather", arguments={"city": "Oslo"})],
            ),
            ChatMessage(role="tool", content='{"output": "rain"}', call_id="c1", tool_name="get_weather"),
        ],
        tools=[WEATHER],
    )


def test_conversation_is_mapped_to_request_response_pairs() -> None:
    messages = to_model_messages(_conversation())
    assert [type(m) for m in messages] == [ModelRequest, ModelResponse, ModelRequest]
    first, second, third = messages
    assert isinstance(first.parts[0], SystemPromptPart)
    assert isinstance(first.parts[1], UserPromptPart)
    call = second.parts[0]
    assert isinstance(call, ToolCallPart)
    assert call.tool_call_id == "c1" and call.args == {"city": "Oslo"}
    ret = third.parts[0]
    assert isinstance(ret, ToolReturnPart)
    assert ret.tool_call_id == "c1" and ret.tool_name == "get_weather"


def test_unparseable_arguments_are_kept_raw() -> None:
    response = ModelResponse(parts=[ToolCallPart(tool_name="get_weather", args="{not json", tool_call_id="c9")])
    out = from_model_response(response)
    assert out.tool_calls[0].arguments == {}
    assert out.tool_calls[0].raw_arguments == "{not json"
    assert not out.is_final


@pytest.mark.parametrize(
    "args, raw",
    [
        ({"INVALID_JSON": "{broken"}, "{broken"),
        ("[1, 2]", "[1, 2]"),
        ("42", "42"),
    ],
)
def test_arguments_that_are_not_an_object_are_kept_raw(args, raw) -> None:
    out = from_model_response(ModelResponse(parts=[ToolCallPart(tool_name="current_time", args=args, tool_call_id="c1")]))
    assert out.tool_calls[0].arguments == {}
    assert out.tool_calls[0].raw_arguments == raw


@pytest.mark.parametrize("args", [None, "", "{}"])
def test_empty_arguments_decode_to_an_empty_object(args) -> None:
    out = from_model_response(ModelResponse(parts=[ToolCallPart(tool_name="current_time", args=args, tool_call_id="c1")]))
    assert out.tool_calls[0].arguments == {}
    assert out.tool_calls[0].raw_arguments is None


def test_json_string_arguments_are_decoded() -> None:
    out = from_model_response(
        ModelResponse(parts=[ToolCallPart(tool_name="get_weather", args='{"city": "Oslo"}', tool_call_id="c1")])
    )
    assert out.tool_calls[0].arguments == {"city": "Oslo"}
    assert out.tool_calls[0].raw_arguments is None


@pytest.mark.asyncio
async def test_complete_sends_tool_definitions_and_parses_tool_calls() -> None:
    seen: List[AgentInfo] = []

    def model_fn(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        seen.append(info)
        return ModelResponse(parts=[ToolCallPart(tool_name="get_weather", args={"city": "Oslo"}, tool_call_id="c1")])

    client = PydanticAIClient(FunctionModel(model_fn))
    response = await client.complete(LLMRequest(messages=[ChatMessage(role="user", content="hi")], tools=[WEATHER]))

    assert [t.name for t in seen[0].function_tools] == ["get_weather"]
    assert seen[0].function_tools[0].parameters_json_schema == WEATHER.parameters
    assert response.tool_calls == [
        ToolCallDirective(call_id="c1", name="get_weather", arguments={"city": "Oslo"})
    ]


@pytest.mark.asyncio
async def test_complete_returns_final_text() -> None:
    def model_fn(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        return ModelResponse(parts=[TextPart(content="It rains.")])

    response = await PydanticAIClient(FunctionModel(model_fn)).complete(_conversation())
    assert response.is_final
    assert response.text == "It rains."


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403, 429])
async def test_auth_and_quota_errors_are_fatal(status: int) -> None:
    def model_fn(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        raise ModelHTTPError(status_code=status, model_name="function")

    with pytest.raises(FatalProviderError):
        await PydanticAIClient(FunctionModel(model_fn)).complete(_conversation())


@pytest.mark.asyncio
async def test_server_errors_are_not_fatal() -> None:
    def model_fn(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        raise ModelHTTPError(status_code=500, model_name="function")

    with pytest.raises(ModelHTTPError):
        await PydanticAIClient(FunctionModel(model_fn)).complete(_conversation())
