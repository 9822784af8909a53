from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, FrozenSet, List, Literal, Optional, Tuple, Union
from uuid import uuid4

from pydantic import Field, field_validator

from .base import BaseSchema, FrozenSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class Role(str, Enum):
    user = "user"
    assistant = "assistant"
    tool = "tool"


class ToolRisk(str, Enum):
    read = "read"
    write = "write"
    exec = "exec"


class Verdict(str, Enum):
    allow = "allow"
    ask = "ask"
    deny = "deny"


class PermissionMode(str, Enum):
    default = "default"
    auto_edit = "auto-edit"
    plan = "plan"
    yolo = "yolo"


class ResultKind(str, Enum):
    success = "success"
    tool_not_found = "tool_not_found"
    invalid_arguments = "invalid_arguments"
    permission_denied = "permission_denied"
    user_rejected = "user_rejected"
    tool_error = "tool_error"
    cancelled = "cancelled"


class TurnStatus(str, Enum):
    completed = "completed"
    turn_limit_exceeded = "turn_limit_exceeded"
    provider_error = "provider_error"
    cancelled = "cancelled"
    loop_detected = "loop_detected"


class PipelineStage(str, Enum):
    discovery = "discovery"
    validate = "validate"
    permission = "permission"
    confirmation = "confirmation"
    execution = "execution"
    formatting = "formatting"


class EngineEventType(str, Enum):
    turn_started = "turn.started"
    turn_completed = "turn.completed"
    model_requested = "model.requested"
    model_responded = "model.responded"
    text_delta = "text.delta"
    tool_requested = "tool.requested"
    tool_completed = "tool.completed"
    stage_started = "stage.started"
    stage_completed = "stage.completed"
    record_appended = "record.appended"


class TokenUsage(FrozenSchema):
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def plus(self, other: Optional["TokenUsage"]) -> "TokenUsage":
        if other is None:
            return self
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


class ToolCall(FrozenSchema):
    """A model-requested tool invocation, before validation.

    ``id`` is the correlation id shared by the assistant record that requested
    the call and the tool record that carries its result.
    """

    id: str = Field(default_factory=lambda: f"call_{uuid4().hex[:24]}")
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)

    def fingerprint(self) -> str:
        return f"{self.name}:{json.dumps(self.arguments, sort_keys=True, default=str)}"


class ToolResult(FrozenSchema):
    call_id: str
    tool_name: str
    kind: ResultKind
    data: Any = None
    error: Optional[str] = None
    display: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.kind == ResultKind.success

    def render_for_model(self) -> str:
        """Text handed back to the model as the tool's return value."""
        if not self.success:
            return f"[{self.kind.value}] {self.error or 'tool call failed'}"
        if self.data is None:
            return "ok"
        if isinstance(self.data, str):
            return self.data
        return json.dumps(self.data, default=str)


class TextContent(FrozenSchema):
    type: Literal["text"] = "text"
    text: str


class ToolCallsContent(FrozenSchema):
    type: Literal["tool_calls"] = "tool_calls"
    text: str = ""
    calls: List[ToolCall]


class ToolResultContent(FrozenSchema):
    type: Literal["tool_result"] = "tool_result"
    result: ToolResult


class NoticeContent(FrozenSchema):
    type: Literal["notice"] = "notice"
    kind: str
    message: str


RecordContent = Annotated[
    Union[TextContent, ToolCallsContent, ToolResultContent, NoticeContent],
    Field(discriminator="type"),
]


class TurnRecord(FrozenSchema):
    """One immutable entry of a session log.

    Records form a tree through ``parent_id``; the first record of a session
    has no parent. Replay order is the order records were appended in.
    """

    id: str = Field(default_factory=_new_id)
    parent_id: Optional[str] = None
    session_id: str
    role: Role
    content: RecordContent
    timestamp: datetime = Field(default_factory=_utc_now)
    usage: Optional[TokenUsage] = None
    git_branch: Optional[str] = None
    cwd: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_json_line(self) -> str:
        return self.model_dump_json() + "\n"

    @classmethod
    def from_json_line(cls, line: str) -> "TurnRecord":
        return cls.model_validate_json(line)

    @property
    def text(self) -> str:
        content = self.content
        if isinstance(content, (TextContent, ToolCallsContent)):
            return content.text
        if isinstance(content, NoticeContent):
            return content.message
        return content.result.render_for_model()


class Session(BaseSchema):
    """Summary of one session, derived from its log."""

    id: str
    working_dir: str
    fingerprint: str
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    turn_count: int = 0
    record_count: int = 0
    head_id: Optional[str] = None
    git_branch: Optional[str] = None
    title: Optional[str] = None
    path: Optional[str] = None


class PermissionRule(FrozenSchema):
    pattern: str
    verdict: Verdict

    @field_validator("pattern")
    @classmethod
    def _strip_pattern(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("permission rule pattern must not be empty")
        return value


class AgentConfiguration(FrozenSchema):
    """Read-only options for one ``run_turn`` invocation.

    Owned by the caller. The engine never mutates it; derive a new snapshot
    with ``model_validate({**config.model_dump(), **changes})`` so that the
    changes are validated.
    """

    provider: str = "pydantic_ai"
    model: str = "openai:gpt-4o"
    permission_mode: PermissionMode = PermissionMode.default
    max_turns: int = Field(default=50, ge=1)
    rules: Tuple[PermissionRule, ...] = ()
    allowed_tools: Optional[FrozenSet[str]] = None
    blocked_tools: FrozenSet[str] = frozenset()
    stream: bool = False
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    max_tool_args_bytes: int = 64_000
    redact_secrets: bool = True
    loop_detection_threshold: Optional[int] = Field(default=None, ge=2)

    def exposes(self, tool_name: str) -> bool:
        if tool_name in self.blocked_tools:
            return False
        return self.allowed_tools is None or tool_name in self.allowed_tools


class EngineEvent(BaseSchema):
    id: str = Field(default_factory=_new_id)
    type: EngineEventType
    session_id: Optional[str] = None
    correlation_id: Optional[str] = None
    tool_name: Optional[str] = None
    stage: Optional[PipelineStage] = None
    created_at: datetime = Field(default_factory=_utc_now)
    payload: Dict[str, Any] = Field(default_factory=dict)


class TurnResult(BaseSchema):
    """Outcome of one ``run_turn`` call."""

    session_id: str
    status: TurnStatus
    message: Optional[str] = None
    reason: Optional[str] = None
    iterations: int = 0
    usage: TokenUsage = Field(default_factory=TokenUsage)
    last_record_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == TurnStatus.completed

    def raise_for_status(self) -> None:
        from ..errors import LoopDetectedError, ProviderError, TurnCancelledError, TurnLimitExceededError

        reason = self.reason or self.status.value
        if self.status == TurnStatus.turn_limit_exceeded:
            raise TurnLimitExceededError(reason)
        if self.status == TurnStatus.provider_error:
            raise ProviderError(reason)
        if self.status == TurnStatus.cancelled:
            raise TurnCancelledError(reason)
        if self.status == TurnStatus.loop_detected:
            raise LoopDetectedError(reason)
