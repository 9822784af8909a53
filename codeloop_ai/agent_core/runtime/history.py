"""Rebuild the provider conversation from persisted turn records."""

from typing import List, Optional, Sequence, Set

from ..providers.base import ChatMessage
from ..schemas.domain import NoticeContent, Role, TextContent, ToolCallsContent, ToolResultContent, TurnRecord

INTERRUPTED_RESULT = "[cancelled] the tool call was interrupted before it completed"


def build_messages(records: Sequence[TurnRecord], system_prompt: Optional[str] = None) -> List[ChatMessage]:
    """Convert a parent chain of records into chat messages.

    Notices are bookkeeping and are not sent to the model. Tool calls left
    without a result (a crash between persisting the request and its result)
    get a synthetic interrupted result so the conversation stays well formed.
    """
    messages: List[ChatMessage] = []
    if system_prompt:
        messages.append(ChatMessage(role="system", content=system_prompt))

    open_calls: List[ChatMessage] = []
    answered: Set[str] = set()

    def close_open_calls() -> None:
        for pending in open_calls:
            for call in pending.tool_calls:
                if call.id not in answered:
                    messages.append(
                        ChatMessage(role="tool", content=INTERRUPTED_RESULT, tool_call_id=call.id, tool_name=call.name)
                    )
        open_calls.clear()

    for record in records:
        content = record.content
        if isinstance(content, NoticeContent):
            continue
        if isinstance(content, ToolResultContent):
            result = content.result
            answered.add(result.call_id)
            messages.append(
                ChatMessage(
                    role="tool",
                    content=result.render_for_model(),
                    tool_call_id=result.call_id,
                    tool_name=result.tool_name,
                )
            )
            continue

        close_open_calls()
        if isinstance(content, ToolCallsContent):
            msg = ChatMessage(role="assistant", content=content.text, tool_calls=tuple(content.calls))
            open_calls.append(msg)
            messages.append(msg)
        elif isinstance(content, TextContent):
            role = "user" if record.role == Role.user else "assistant"
            messages.append(ChatMessage(role=role, content=content.text))

    close_open_calls()
    return messages
