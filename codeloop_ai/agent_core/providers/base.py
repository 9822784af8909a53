from __future__ import annotations

"""Provider-neutral chat types.

Adapters translate between these types and a backend's wire format:

- ``ChatMessage`` is one entry of the conversation handed to the model.
- ``ChatDelta`` is one increment of a (possibly streamed) response. Text
  arrives as ``text`` fragments; tool calls are always delivered complete and
  normalized, on the final delta (``done=True``), whatever the backend's own
  encoding.
- ``collect_response`` folds a delta stream into a ``ChatResponse``.
"""

import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Literal, Optional, Protocol, Sequence, Tuple

from ..schemas.domain import TokenUsage, ToolCall
from ..tools.base import ToolContract

ChatRole = Literal["system", "user", "assistant", "tool"]


@dataclass(frozen=True)
class ChatMessage:
    role: ChatRole
    content: str = ""
    tool_calls: Tuple[ToolCall, ...] = ()
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None


@dataclass(frozen=True)
class ToolSchema:
    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_contract(cls, tool: ToolContract) -> "ToolSchema":
        return cls(name=tool.name, description=tool.description, parameters=tool.parameters_json_schema())


@dataclass(frozen=True)
class ChatOptions:
    model: str
    stream: bool = False
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass(frozen=True)
class ChatDelta:
    text: str = ""
    tool_calls: Tuple[ToolCall, ...] = ()
    usage: Optional[TokenUsage] = None
    model_name: Optional[str] = None
    done: bool = False


@dataclass(frozen=True)
class ChatResponse:
    text: str
    tool_calls: Tuple[ToolCall, ...] = ()
    usage: Optional[TokenUsage] = None
    model_name: Optional[str] = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class ChatProvider(Protocol):
    """Protocol for chat model backends."""

    id: str

    def send(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolSchema],
        options: ChatOptions,
    ) -> AsyncIterator[ChatDelta]: ...


TextCallback = Callable[[str], Awaitable[None]]


async def collect_response(
    stream: AsyncIterator[ChatDelta],
    on_text: Optional[TextCallback] = None,
) -> ChatResponse:
    chunks: list[str] = []
    calls: list[ToolCall] = []
    usage: Optional[TokenUsage] = None
    model_name: Optional[str] = None
    async for delta in stream:
        if delta.text:
            chunks.append(delta.text)
            if on_text is not None:
                await on_text(delta.text)
        calls.extend(delta.tool_calls)
        if delta.usage is not None:
            usage = delta.usage if usage is None else usage.plus(delta.usage)
        model_name = delta.model_name or model_name
    return ChatResponse(text="".join(chunks), tool_calls=tuple(calls), usage=usage, model_name=model_name)


_WIRE_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


class ToolNameMap:
    """Translate tool names to and from backend-safe identifiers.

    Most backends only accept ``[A-Za-z0-9_-]`` in function names, while
    engine tools use dotted names such as ``file.read``.
    """

    def __init__(self, tools: Sequence[ToolSchema]) -> None:
        self._to_wire: Dict[str, str] = {}
        self._from_wire: Dict[str, str] = {}
        for tool in tools:
            wire = _WIRE_UNSAFE.sub("_", tool.name)
            self._to_wire[tool.name] = wire
            self._from_wire[wire] = tool.name

    def to_wire(self, name: str) -> str:
        return self._to_wire.get(name) or _WIRE_UNSAFE.sub("_", name)

    def from_wire(self, name: str) -> str:
        return self._from_wire.get(name, name)
