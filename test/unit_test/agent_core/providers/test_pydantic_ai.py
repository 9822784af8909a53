from __future__ import annotations

from typing import AsyncIterator, List

import httpx
import pytest
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior
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

from codeloop_ai.agent_core.errors import ProviderError, TransientProviderError
from codeloop_ai.agent_core.providers import ChatMessage, ChatOptions, ToolNameMap, ToolSchema, collect_response
from codeloop_ai.agent_core.providers.pydantic_ai import (
    PydanticAIChatProvider,
    map_pydantic_ai_error,
    to_model_messages,
)
from codeloop_ai.agent_core.schemas import ToolCall

READ_TOOL = ToolSchema(
    name="file.read",
    description="Read a file",
    parameters={"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]},
)


def _tool_calling_model(seen_tools: List[str]) -> FunctionModel:
    def respond(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        seen_tools.extend(t.name for t in info.function_tools)
        last = messages[-1]
        if any(isinstance(p, ToolReturnPart) for p in last.parts):
            return ModelResponse(parts=[TextPart(content="file says hi")])
        return ModelResponse(
            parts=[ToolCallPart(tool_name="file_read", args={"path": "README.md"}, tool_call_id="call_1")]
        )

    return FunctionModel(respond)


@pytest.mark.asyncio
async def test_tool_calls_are_normalized_with_engine_names() -> None:
    seen: List[str] = []
    provider = PydanticAIChatProvider(_tool_calling_model(seen))

    response = await collect_response(
        provider.send([ChatMessage(role="user", content="read it")], [READ_TOOL], ChatOptions(model="ignored"))
    )

    assert seen == ["file_read"]
    assert response.text == ""
    assert response.tool_calls == (ToolCall(id="call_1", name="file.read", arguments={"path": "README.md"}),)
    assert response.usage is not None


@pytest.mark.asyncio
async def test_tool_results_are_sent_back() -> None:
    provider = PydanticAIChatProvider(_tool_calling_model([]))
    call = ToolCall(id="call_1", name="file.read", arguments={"path": "README.md"})
    messages = [
        ChatMessage(role="user", content="read it"),
        ChatMessage(role="assistant", tool_calls=(call,)),
        ChatMessage(role="tool", content="hi", tool_call_id="call_1", tool_name="file.read"),
    ]

    response = await collect_response(provider.send(messages, [READ_TOOL], ChatOptions(model="ignored")))

    assert response.text == "file says hi"
    assert not response.has_tool_calls


@pytest.mark.asyncio
async def test_streaming_text() -> None:
    async def stream(messages: List[ModelMessage], info: AgentInfo) -> AsyncIterator[str]:
        for chunk in ("Hel", "lo ", "world"):
            yield chunk

    provider = PydanticAIChatProvider(FunctionModel(stream_function=stream))
    fragments: List[str] = []

    async def on_text(text: str) -> None:
        fragments.append(text)

    response = await collect_response(
        provider.send([ChatMessage(role="user", content="hi")], [], ChatOptions(model="x", stream=True)),
        on_text=on_text,
    )

    assert response.text == "Hello world"
    assert "".join(fragments) == "Hello world"
    assert len(fragments) > 1


@pytest.mark.asyncio
async def test_backend_errors_are_classified() -> None:
    def boom(messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        raise ModelHTTPError(status_code=503, model_name="fn")

    provider = PydanticAIChatProvider(FunctionModel(boom))
    with pytest.raises(TransientProviderError) as exc_info:
        await collect_response(provider.send([ChatMessage(role="user", content="hi")], [], ChatOptions(model="x")))
    assert exc_info.value.status_code == 503
    assert exc_info.value.provider == "pydantic_ai"


@pytest.mark.parametrize(
    "exc,transient",
    [
        (ModelHTTPError(status_code=429, model_name="m"), True),
        (ModelHTTPError(status_code=500, model_name="m"), True),
        (ModelHTTPError(status_code=401, model_name="m"), False),
        (ModelHTTPError(status_code=400, model_name="m"), False),
        (httpx.ConnectError("refused"), True),
        (TimeoutError(), True),
        (UnexpectedModelBehavior("garbled"), False),
        (RuntimeError("odd"), False),
    ],
)
def test_map_pydantic_ai_error(exc: Exception, transient: bool) -> None:
    mapped = map_pydantic_ai_error(exc, "p")
    assert isinstance(mapped, ProviderError)
    assert isinstance(mapped, TransientProviderError) is transient


def test_to_model_messages_merges_request_parts() -> None:
    names = ToolNameMap([READ_TOOL])
    call = ToolCall(id="c1", name="file.read", arguments={"path": "a"})
    out = to_model_messages(
        [
            ChatMessage(role="system", content="be brief"),
            ChatMessage(role="user", content="go"),
            ChatMessage(role="assistant", content="reading", tool_calls=(call,)),
            ChatMessage(role="tool", content="data", tool_call_id="c1", tool_name="file.read"),
            ChatMessage(role="user", content="thanks"),
        ],
        names,
    )

    assert [type(m) for m in out] == [ModelRequest, ModelResponse, ModelRequest]
    assert [type(p) for p in out[0].parts] == [SystemPromptPart, UserPromptPart]
    assert isinstance(out[1].parts[0], TextPart)
    assert out[1].parts[1].tool_name == "file_read"
    assert [type(p) for p in out[2].parts] == [ToolReturnPart, UserPromptPart]
    assert out[2].parts[0].tool_call_id == "c1"


def test_tool_name_map() -> None:
    names = ToolNameMap([READ_TOOL, ToolSchema(name="shell.run", description="")])
    assert names.to_wire("file.read") == "file_read"
    assert names.from_wire("shell_run") == "shell.run"
    assert names.from_wire("unknown_tool") == "unknown_tool"
