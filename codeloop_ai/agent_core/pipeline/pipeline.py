from __future__ import annotations

"""Tool execution pipeline.

``ExecutionPipeline.execute`` drives one ``ToolCall`` through the stages in
``stages.py`` and always returns a ``ToolResult``; failures at any stage
become result kinds rather than exceptions. Each stage is bracketed by
``stage.started`` / ``stage.completed`` events on the event channel.

Cancellation is checked before every stage up to execution. An executor that
is already running is allowed to finish and its result is kept.
"""

import logging
import time
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Sequence

from ..cancellation import CancellationToken
from ..events import EventChannel
from ..policy.guards import redact, redact_payload
from ..schemas.domain import (
    AgentConfiguration,
    EngineEvent,
    EngineEventType,
    PipelineStage,
    ResultKind,
    ToolCall,
    ToolResult,
)
from ..tools.registry import ToolRegistry
from .confirmation import ConfirmationHandler, SessionApprovals
from .stages import (
    ConfirmationStage,
    DiscoveryStage,
    ExecutionStage,
    FormattingStage,
    PermissionStage,
    Stage,
    ToolExecution,
    ValidationStage,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionRecord:
    session_id: str
    call_id: str
    tool_name: str
    kind: ResultKind
    started_at: datetime
    duration_ms: float


class ExecutionPipeline:
    """Run tool calls through discovery, validation, permission, confirmation,
    execution and formatting.

    Args:
        registry: Tools the pipeline may resolve.
        events: Channel for stage notifications.
        confirmation: Default handler for ``ask`` verdicts. A handler passed to
            ``execute`` takes precedence.
        approvals: Store of session-scoped approvals; shared with the caller
            so approvals survive across turns.
        history_limit: Number of execution records kept for ``history``.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        events: Optional[EventChannel] = None,
        confirmation: Optional[ConfirmationHandler] = None,
        approvals: Optional[SessionApprovals] = None,
        history_limit: int = 500,
    ) -> None:
        self._registry = registry
        self._events = events or EventChannel()
        self._approvals = approvals or SessionApprovals()
        self._stages: Sequence[Stage] = (
            DiscoveryStage(registry),
            ValidationStage(),
            PermissionStage(self._approvals),
            ConfirmationStage(self._approvals, confirmation),
            ExecutionStage(),
            FormattingStage(),
        )
        self._history: Deque[ExecutionRecord] = deque(maxlen=history_limit)

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def approvals(self) -> SessionApprovals:
        return self._approvals

    async def execute(
        self,
        call: ToolCall,
        config: AgentConfiguration,
        *,
        session_id: str,
        working_dir: str,
        confirm: Optional[ConfirmationHandler] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ToolResult:
        started_at = datetime.now(timezone.utc)
        execution = ToolExecution(
            call=call,
            config=config,
            session_id=session_id,
            working_dir=working_dir,
            confirm=confirm,
        )

        for stage in self._stages:
            # output of an executor that already ran is still formatted and returned
            if cancel is not None and cancel.cancelled and execution.execution_ms is None:
                execution.abort(ResultKind.cancelled, cancel.reason, stage=stage.name.value)
                break
            await self._emit(EngineEventType.stage_started, execution, stage)
            await stage.process(execution)
            await self._emit(EngineEventType.stage_completed, execution, stage)
            if execution.aborted:
                break

        result = self._finalize(execution, started_at)
        self._history.append(
            ExecutionRecord(
                session_id=session_id,
                call_id=call.id,
                tool_name=call.name,
                kind=result.kind,
                started_at=started_at,
                duration_ms=result.metadata.get("duration_ms", 0.0),
            )
        )
        if result.success:
            logger.debug(f"Tool {call.name} ({call.id}) succeeded")
        else:
            logger.info(f"Tool {call.name} ({call.id}) ended with {result.kind.value}: {result.error}")
        return result

    def history(self, session_id: Optional[str] = None) -> List[ExecutionRecord]:
        return [r for r in self._history if session_id is None or r.session_id == session_id]

    def stats(self) -> Dict[str, int]:
        counts = Counter(r.kind.value for r in self._history)
        return {"total": len(self._history), **counts}

    async def _emit(self, type_: EngineEventType, execution: ToolExecution, stage: Stage) -> None:
        payload: Dict[str, object] = {}
        if type_ == EngineEventType.stage_completed:
            payload["aborted"] = execution.aborted
            if execution.result is not None:
                payload["kind"] = execution.result.kind.value
            if stage.name == PipelineStage.confirmation and not execution.needs_confirmation:
                payload["skipped"] = True
        await self._events.emit(
            EngineEvent(
                type=type_,
                session_id=execution.session_id,
                correlation_id=execution.call.id,
                tool_name=execution.call.name,
                stage=stage.name,
                payload=payload,
            )
        )

    @staticmethod
    def _finalize(execution: ToolExecution, started_at: datetime) -> ToolResult:
        result = execution.result
        if result is None:
            # only reachable if a stage list omits formatting
            result = ToolResult(
                call_id=execution.call.id,
                tool_name=execution.call.name,
                kind=ResultKind.tool_error,
                error="pipeline finished without a result",
            )
        metadata = {
            **result.metadata,
            "started_at": started_at.isoformat(),
            "duration_ms": round((time.monotonic() - execution.started_at) * 1000, 3),
        }
        if execution.signature is not None:
            metadata["signature"] = execution.signature
        if execution.decision is not None:
            metadata["permission"] = execution.decision.verdict.value
        if execution.execution_ms is not None:
            metadata["execution_ms"] = execution.execution_ms
        update: Dict[str, Any] = {"metadata": metadata}
        if execution.config.redact_secrets:
            # covers aborted results too
            update["metadata"] = redact_payload(metadata)
            update["data"] = redact_payload(result.data)
            update["error"] = redact(result.error) if result.error else result.error
            update["display"] = redact(result.display) if result.display else result.display
        return result.model_copy(update=update)
