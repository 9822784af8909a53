"""Tool execution pipeline."""

from .confirmation import (
    CallbackConfirmationHandler,
    ConfirmationDecision,
    ConfirmationHandler,
    ConfirmationRequest,
    SessionApprovals,
    StaticConfirmationPolicy,
)
from .pipeline import ExecutionPipeline, ExecutionRecord
from .stages import ToolExecution

__all__ = [
    "CallbackConfirmationHandler",
    "ConfirmationDecision",
    "ConfirmationHandler",
    "ConfirmationRequest",
    "ExecutionPipeline",
    "ExecutionRecord",
    "SessionApprovals",
    "StaticConfirmationPolicy",
    "ToolExecution",
]
