"""Chat provider backed by pydantic-ai's direct model request API.

Any model pydantic-ai can address (``"openai:gpt-4o"``,
``"anthropic:claude-sonnet-4-5"``, a ``Model`` instance, ...) becomes a chat
provider. pydantic-ai already normalizes each backend's tool-call encoding
into ``ToolCallPart``; this adapter maps those parts to engine ``ToolCall``s.
"""

from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

import httpx
from pydantic_ai.direct import model_request, model_request_stream
from pydantic_ai.exceptions import ModelAPIError, ModelHTTPError, UnexpectedModelBehavior, UserError
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelRequestPart,
    ModelResponse,
    PartDeltaEvent,
    PartStartEvent,
    SystemPromptPart,
    TextPart,
    TextPartDelta,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models import Model, ModelRequestParameters
from pydantic_ai.settings import ModelSettings
from pydantic_ai.tools import ToolDefinition

from codeloop_ai.core.logging_config import get_logger

from ..errors import ProviderError, TransientProviderError
from ..schemas.domain import TokenUsage, ToolCall
from .base import ChatDelta, ChatMessage, ChatOptions, ToolNameMap, ToolSchema

logger = get_logger(__name__)

_TRANSIENT_STATUS = frozenset({408, 409, 425, 429})


class PydanticAIChatProvider:
    """Chat provider using ``pydantic_ai.direct``.

    Args:
        model: Optional fixed model (name or ``Model`` instance). When omitted
            the model comes from ``ChatOptions.model`` on every call.
        provider_id: Registry id for this adapter.
    """

    def __init__(self, model: Union[Model, str, None] = None, *, provider_id: str = "pydantic_ai") -> None:
        self._model = model
        self.id = provider_id

    async def send(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolSchema],
        options: ChatOptions,
    ) -> AsyncIterator[ChatDelta]:
        names = ToolNameMap(tools)
        model = self._model if self._model is not None else options.model
        history = to_model_messages(messages, names)
        params = ModelRequestParameters(
            function_tools=[
                ToolDefinition(
                    name=names.to_wire(t.name),
                    description=t.description,
                    parameters_json_schema=t.parameters or {"type": "object", "properties": {}},
                )
                for t in tools
            ],
            allow_text_output=True,
        )
        settings = _model_settings(options)

        try:
            if not options.stream:
                response = await model_request(
                    model, history, model_settings=settings, model_request_parameters=params
                )
                yield _final_delta(response, names, include_text=True)
                return

            async with model_request_stream(
                model, history, model_settings=settings, model_request_parameters=params
            ) as stream:
                async for event in stream:
                    if isinstance(event, PartStartEvent) and isinstance(event.part, TextPart):
                        if event.part.content:
                            yield ChatDelta(text=event.part.content)
                    elif isinstance(event, PartDeltaEvent) and isinstance(event.delta, TextPartDelta):
                        if event.delta.content_delta:
                            yield ChatDelta(text=event.delta.content_delta)
                response = stream.get()
            yield _final_delta(response, names, include_text=False)
        except ProviderError:
            raise
        except Exception as exc:
            raise map_pydantic_ai_error(exc, self.id) from exc


def map_pydantic_ai_error(exc: Exception, provider_id: str) -> ProviderError:
    """Classify a pydantic-ai / transport failure as transient or fatal."""
    if isinstance(exc, ModelHTTPError):
        status = exc.status_code
        cls = TransientProviderError if status in _TRANSIENT_STATUS or status >= 500 else ProviderError
        return cls(f"{provider_id}: HTTP {status} from {exc.model_name}", provider=provider_id, status_code=status)
    if isinstance(exc, (httpx.TransportError, TimeoutError)):
        return TransientProviderError(f"{provider_id}: transport error: {exc}", provider=provider_id)
    if isinstance(exc, (ModelAPIError, UnexpectedModelBehavior, UserError)):
        return ProviderError(f"{provider_id}: {exc}", provider=provider_id)
    logger.exception(f"Unexpected error from provider {provider_id}")
    return ProviderError(f"{provider_id}: {type(exc).__name__}: {exc}", provider=provider_id)


def to_model_messages(messages: Sequence[ChatMessage], names: ToolNameMap) -> List[ModelMessage]:
    """Convert chat messages into pydantic-ai request/response messages.

    Consecutive system/user/tool messages are merged into one ``ModelRequest``.
    """
    out: List[ModelMessage] = []
    pending: List[ModelRequestPart] = []

    def flush() -> None:
        if pending:
            out.append(ModelRequest(parts=list(pending)))
            pending.clear()

    for msg in messages:
        if msg.role == "system":
            pending.append(SystemPromptPart(content=msg.content))
        elif msg.role == "user":
            pending.append(UserPromptPart(content=msg.content))
        elif msg.role == "tool":
            pending.append(
                ToolReturnPart(
                    tool_name=names.to_wire(msg.tool_name or ""),
                    content=msg.content,
                    tool_call_id=msg.tool_call_id or "",
                )
            )
        else:
            flush()
            parts: List[Any] = []
            if msg.content:
                parts.append(TextPart(content=msg.content))
            for call in msg.tool_calls:
                parts.append(
                    ToolCallPart(tool_name=names.to_wire(call.name), args=dict(call.arguments), tool_call_id=call.id)
                )
            out.append(ModelResponse(parts=parts))
    flush()
    return out


def _model_settings(options: ChatOptions) -> Optional[ModelSettings]:
    settings: Dict[str, Any] = {}
    if options.temperature is not None:
        settings["temperature"] = options.temperature
    if options.max_tokens is not None:
        settings["max_tokens"] = options.max_tokens
    return ModelSettings(**settings) if settings else None


def _final_delta(response: ModelResponse, names: ToolNameMap, *, include_text: bool) -> ChatDelta:
    text = "".join(p.content for p in response.parts if isinstance(p, TextPart)) if include_text else ""
    calls = tuple(
        ToolCall(id=p.tool_call_id, name=names.from_wire(p.tool_name), arguments=p.args_as_dict())
        for p in response.parts
        if isinstance(p, ToolCallPart)
    )
    usage = TokenUsage(input_tokens=response.usage.input_tokens, output_tokens=response.usage.output_tokens)
    return ChatDelta(text=text, tool_calls=calls, usage=usage, model_name=response.model_name, done=True)
