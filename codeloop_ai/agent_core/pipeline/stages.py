from __future__ import annotations

"""Pipeline stages.

Each stage inspects and updates a ``ToolExecution``. A stage ends the
pipeline early by calling ``execution.abort(kind, message)``; the pipeline
stops at the first aborted execution and returns its result.

Order: discovery, validate, permission, confirmation, execution, formatting.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from ..policy.evaluator import PermissionEvaluator
from ..policy.guards import screen_path
from ..policy.models import PermissionDecision
from ..schemas.domain import (
    AgentConfiguration,
    PermissionMode,
    PipelineStage,
    ResultKind,
    ToolCall,
    ToolResult,
    Verdict,
)
from ..tools.base import ToolContext, ToolContract, ToolOutput
from ..tools.registry import ToolRegistry
from ..tools.validation import ArgumentValidationError, validate_arguments
from .confirmation import ConfirmationHandler, ConfirmationRequest, SessionApprovals

logger = logging.getLogger(__name__)


@dataclass
class ToolExecution:
    """Mutable state of one tool call moving through the pipeline."""

    call: ToolCall
    config: AgentConfiguration
    session_id: str
    working_dir: str
    confirm: Optional[ConfirmationHandler] = None

    tool: Optional[ToolContract] = None
    params: Optional[BaseModel] = None
    arguments: Dict[str, Any] = field(default_factory=dict)
    signature: Optional[str] = None
    decision: Optional[PermissionDecision] = None
    needs_confirmation: bool = False
    confirmation_reason: str = ""
    raw_output: Any = None
    result: Optional[ToolResult] = None
    started_at: float = field(default_factory=time.monotonic)
    execution_ms: Optional[float] = None

    @property
    def aborted(self) -> bool:
        return self.result is not None

    def abort(self, kind: ResultKind, message: str, **metadata: Any) -> None:
        self.result = ToolResult(
            call_id=self.call.id,
            tool_name=self.call.name,
            kind=kind,
            error=message,
            metadata=metadata,
        )


class Stage(Protocol):
    name: PipelineStage

    async def process(self, execution: ToolExecution) -> None: ...


class DiscoveryStage:
    name = PipelineStage.discovery

    def __init__(self, registry: ToolRegistry) -> None:
        self._registry = registry

    async def process(self, execution: ToolExecution) -> None:
        name = execution.call.name
        allowed = execution.config.allowed_tools
        # blocked tools stay discoverable so Permission reports them as denied
        if not self._registry.has(name) or (allowed is not None and name not in allowed):
            available = ", ".join(t.name for t in self._registry.exposed(execution.config)) or "none"
            execution.abort(ResultKind.tool_not_found, f"unknown tool: {name} (available: {available})")
            return
        execution.tool = self._registry.get(name)


class ValidationStage:
    name = PipelineStage.validate

    async def process(self, execution: ToolExecution) -> None:
        assert execution.tool is not None
        try:
            params = validate_arguments(
                execution.tool,
                execution.call.arguments,
                max_bytes=execution.config.max_tool_args_bytes,
            )
        except ArgumentValidationError as exc:
            execution.abort(ResultKind.invalid_arguments, str(exc), issues=exc.issues)
            return
        execution.params = params
        execution.arguments = params.model_dump(mode="json")


class PermissionStage:
    name = PipelineStage.permission

    def __init__(self, approvals: SessionApprovals) -> None:
        self._approvals = approvals

    async def process(self, execution: ToolExecution) -> None:
        tool = execution.tool
        assert tool is not None
        config = execution.config

        signature = PermissionEvaluator.signature_for(tool, execution.arguments)
        execution.signature = signature.render()
        decision = PermissionEvaluator(config).check(tool, execution.arguments)
        execution.decision = decision

        if decision.verdict == Verdict.deny:
            execution.abort(ResultKind.permission_denied, f"permission denied for {signature}: {decision.reason}")
            return

        escalate: Optional[str] = None
        for arg in tool.path_arguments:
            value = execution.arguments.get(arg)
            if not value:
                continue
            issue = screen_path(str(value))
            if issue is None:
                continue
            if issue.verdict == Verdict.deny:
                execution.abort(ResultKind.permission_denied, issue.reason)
                return
            if config.permission_mode != PermissionMode.yolo:
                escalate = issue.reason

        if decision.verdict == Verdict.ask or escalate is not None:
            if self._approvals.is_approved(execution.session_id, execution.signature):
                logger.debug(f"{signature} approved earlier in session {execution.session_id}")
                return
            execution.needs_confirmation = True
            execution.confirmation_reason = escalate or decision.reason


class ConfirmationStage:
    name = PipelineStage.confirmation

    def __init__(self, approvals: SessionApprovals, default_handler: Optional[ConfirmationHandler] = None) -> None:
        self._approvals = approvals
        self._default_handler = default_handler

    async def process(self, execution: ToolExecution) -> None:
        if not execution.needs_confirmation:
            return
        assert execution.tool is not None and execution.signature is not None
        handler = execution.confirm or self._default_handler
        if handler is None:
            execution.abort(
                ResultKind.user_rejected,
                f"{execution.signature} requires confirmation and no confirmation handler is available",
            )
            return

        request = ConfirmationRequest(
            session_id=execution.session_id,
            call=execution.call,
            signature=execution.signature,
            risk=execution.tool.risk,
            reason=execution.confirmation_reason,
            arguments=dict(execution.arguments),
        )
        decision = await handler.request_confirmation(request)
        if not decision.approved:
            execution.abort(ResultKind.user_rejected, decision.reason or "rejected by user")
            return
        if decision.scope == "session":
            self._approvals.remember(execution.session_id, execution.signature)


class ExecutionStage:
    name = PipelineStage.execution

    async def process(self, execution: ToolExecution) -> None:
        tool = execution.tool
        assert tool is not None and execution.params is not None
        ctx = ToolContext(
            session_id=execution.session_id,
            call_id=execution.call.id,
            working_dir=execution.working_dir,
        )
        start = time.monotonic()
        try:
            execution.raw_output = await tool.run(execution.params, ctx)
        except Exception as exc:
            logger.warning(f"Tool {tool.name} raised {type(exc).__name__}: {exc}", exc_info=True)
            execution.abort(ResultKind.tool_error, f"{type(exc).__name__}: {exc}")
        finally:
            execution.execution_ms = round((time.monotonic() - start) * 1000, 3)


class FormattingStage:
    name = PipelineStage.formatting

    async def process(self, execution: ToolExecution) -> None:
        raw = execution.raw_output
        kind = ResultKind.success
        error: Optional[str] = None
        display: Optional[str] = None

        if isinstance(raw, ToolOutput):
            data = raw.data
            display = raw.display
            if not raw.success:
                kind = ResultKind.tool_error
                error = raw.error or "tool reported failure"
        elif isinstance(raw, BaseModel):
            data = raw.model_dump(mode="json")
        else:
            data = raw

        execution.result = ToolResult(
            call_id=execution.call.id,
            tool_name=execution.call.name,
            kind=kind,
            data=to_jsonable_python(data, fallback=str),
            error=error,
            display=display,
        )
