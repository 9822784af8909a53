"""Chat provider adapters."""

from .base import (
    ChatDelta,
    ChatMessage,
    ChatOptions,
    ChatProvider,
    ChatResponse,
    ToolNameMap,
    ToolSchema,
    collect_response,
)
from .registry import ProviderRegistry
from .retry import RetryingChatProvider, RetryPolicy

__all__ = [
    "ChatDelta",
    "ChatMessage",
    "ChatOptions",
    "ChatProvider",
    "ChatResponse",
    "ProviderRegistry",
    "RetryPolicy",
    "RetryingChatProvider",
    "ToolNameMap",
    "ToolSchema",
    "collect_response",
]
