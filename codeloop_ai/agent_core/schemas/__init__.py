from .base import BaseSchema, FrozenSchema
from .domain import (
    AgentConfiguration,
    EngineEvent,
    EngineEventType,
    NoticeContent,
    PermissionMode,
    PermissionRule,
    PipelineStage,
    RecordContent,
    ResultKind,
    Role,
    Session,
    TextContent,
    TokenUsage,
    ToolCall,
    ToolCallsContent,
    ToolResult,
    ToolResultContent,
    ToolRisk,
    TurnRecord,
    TurnResult,
    TurnStatus,
    Verdict,
)

__all__ = [
    "BaseSchema",
    "FrozenSchema",
    "AgentConfiguration",
    "EngineEvent",
    "EngineEventType",
    "NoticeContent",
    "PermissionMode",
    "PermissionRule",
    "PipelineStage",
    "RecordContent",
    "ResultKind",
    "Role",
    "Session",
    "TextContent",
    "TokenUsage",
    "ToolCall",
    "ToolCallsContent",
    "ToolResult",
    "ToolResultContent",
    "ToolRisk",
    "TurnRecord",
    "TurnResult",
    "TurnStatus",
    "Verdict",
]
