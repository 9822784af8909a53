from __future__ import annotations

"""LangGraph turn loop.

``AgentTurnLoop.run_turn`` advances a session by one user message.

Execution model
---------------

- The user message is appended to the session first.
- The loop then runs a LangGraph state machine:

  ``start -> call_model -> (execute_tools -> call_model)* -> finish``

- ``call_model`` sends the parent-chain history plus the exposed tool
  schemas to the configured provider. A plain-text answer is persisted and
  ends the turn; tool calls are persisted as one assistant record and handed
  to ``execute_tools``.
- ``execute_tools`` runs the calls one at a time, in the order requested,
  through the ``ExecutionPipeline`` and persists each result before the next
  call starts.

Termination
-----------

- ``min(config.max_turns, SAFETY_LIMIT)`` bounds the number of model calls.
  Reaching it yields ``turn_limit_exceeded``; the limit is never hit silently.
- Provider failures that survive retries yield ``provider_error``.
- A cancelled token (or task cancellation) persists ``cancelled`` results for
  every pending tool call, or a ``cancelled`` notice when none is pending.

Every model response and tool result is durably appended before the next
model call, so a crash mid-turn leaves a resumable log.
"""

import asyncio
import logging
from typing import Dict, Optional, Union

from langgraph.errors import GraphRecursionError
from langgraph.graph import END, StateGraph

from ..cancellation import CancellationToken
from ..errors import ProviderError
from ..pipeline.confirmation import ConfirmationHandler
from ..providers.base import ChatOptions, ChatResponse, ToolSchema, collect_response
from ..schemas.domain import (
    AgentConfiguration,
    EngineEvent,
    EngineEventType,
    NoticeContent,
    RecordContent,
    ResultKind,
    Role,
    Session,
    TextContent,
    TokenUsage,
    ToolCallsContent,
    ToolResult,
    ToolResultContent,
    TurnRecord,
    TurnResult,
    TurnStatus,
)
from .history import build_messages
from .loop_detection import LoopDetector
from .models import TurnLoopDeps, _TurnContext, _TurnState

logger = logging.getLogger(__name__)

SAFETY_LIMIT = 100


class AgentTurnLoop:
    """Drive one session turn: model calls, tool calls and persistence.

    Turns on the same session are serialized with a per-session lock;
    different sessions run concurrently.
    """

    def __init__(self, deps: TurnLoopDeps) -> None:
        self._deps = deps
        self._locks: Dict[str, asyncio.Lock] = {}
        self._graph = self._build_graph()

    @property
    def deps(self) -> TurnLoopDeps:
        return self._deps

    def _build_graph(self):
        """Build and compile the LangGraph state machine."""
        g: StateGraph = StateGraph(_TurnState)
        g.add_node("start", self._node_start)
        g.add_node("call_model", self._node_call_model)
        g.add_node("execute_tools", self._node_execute_tools)
        g.add_node("finish", self._node_finish)

        g.set_entry_point("start")
        g.add_edge("start", "call_model")
        g.add_conditional_edges(
            "call_model",
            self._route,
            {"tools": "execute_tools", "finish": "finish"},
        )
        g.add_conditional_edges(
            "execute_tools",
            self._route_after_tools,
            {"model": "call_model", "finish": "finish"},
        )
        g.add_edge("finish", END)
        return g.compile()

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    async def run_turn(
        self,
        session: Union[str, Session],
        message: str,
        config: AgentConfiguration,
        *,
        resume_from: Optional[str] = None,
        confirm: Optional[ConfirmationHandler] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> TurnResult:
        """Append ``message`` to the session and run the loop to an outcome.

        Args:
            session: Session id or ``Session``.
            message: New user message.
            config: Read-only configuration snapshot for this turn.
            resume_from: Record id to branch from instead of the session head.
            confirm: Confirmation handler for ``ask`` verdicts in this turn.
            cancel: Cooperative cancellation token.
        """
        session_id = session.id if isinstance(session, Session) else session
        async with self._lock(session_id):
            return await self._run_locked(session_id, message, config, resume_from, confirm, cancel)

    async def _run_locked(
        self,
        session_id: str,
        message: str,
        config: AgentConfiguration,
        resume_from: Optional[str],
        confirm: Optional[ConfirmationHandler],
        cancel: Optional[CancellationToken],
    ) -> TurnResult:
        store = self._deps.store
        info = await store.get_session(session_id)
        parent_id = resume_from if resume_from is not None else info.head_id
        git_branch = await _git_branch(store, info.working_dir)

        user_record = TurnRecord(
            session_id=session_id,
            parent_id=parent_id,
            role=Role.user,
            content=TextContent(text=message),
            git_branch=git_branch,
            cwd=info.working_dir,
        )
        await store.append(session_id, user_record)

        limit = min(config.max_turns, SAFETY_LIMIT)
        ctx = _TurnContext(
            session_id=session_id,
            working_dir=info.working_dir,
            config=config,
            head_id=user_record.id,
            git_branch=git_branch,
            confirm=confirm,
            cancel=cancel,
            loop_detector=LoopDetector(config.loop_detection_threshold),
        )
        state: _TurnState = {"session_id": session_id, "iteration": 0, "limit": limit, "ctx": ctx}

        try:
            final = await self._graph.ainvoke(state, config={"recursion_limit": 2 * limit + 10})
        except asyncio.CancelledError:
            await asyncio.shield(self._persist_cancellation(ctx, "turn task cancelled"))
            raise
        except GraphRecursionError:
            logger.error(f"Turn graph for session {session_id} exceeded its recursion limit")
            final = {
                **state,
                "_status": TurnStatus.turn_limit_exceeded.value,
                "_reason": f"turn limit of {limit} reached",
            }

        status = TurnStatus(final.get("_status") or TurnStatus.completed.value)
        return TurnResult(
            session_id=session_id,
            status=status,
            message=ctx.last_text if status == TurnStatus.completed else None,
            reason=final.get("_reason"),
            iterations=int(final.get("iteration") or 0),
            usage=ctx.usage,
            last_record_id=ctx.head_id,
        )

    async def _node_start(self, state: _TurnState) -> _TurnState:
        ctx = state["ctx"]
        await self._emit(ctx, EngineEventType.turn_started, limit=state["limit"])
        return state

    async def _node_call_model(self, state: _TurnState) -> _TurnState:
        """Ask the model for the next step and persist its answer."""
        ctx = state["ctx"]
        config = ctx.config

        if ctx.cancel is not None and ctx.cancel.cancelled:
            await self._persist_cancellation(ctx, ctx.cancel.reason)
            return _finish(state, TurnStatus.cancelled, ctx.cancel.reason)

        if state["iteration"] >= state["limit"]:
            reason = f"turn limit reached: {state['limit']} model calls without a final answer"
            logger.warning(f"Session {ctx.session_id}: {reason}")
            return _finish(state, TurnStatus.turn_limit_exceeded, reason)

        state["iteration"] += 1
        history = await self._deps.store.history(ctx.session_id, ctx.head_id)
        messages = build_messages(history, config.system_prompt)
        tools = [ToolSchema.from_contract(t) for t in self._deps.pipeline.registry.exposed(config)]
        options = ChatOptions(
            model=config.model,
            stream=config.stream,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )

        await self._emit(ctx, EngineEventType.model_requested, iteration=state["iteration"], messages=len(messages))
        try:
            response = await self._request(ctx, messages, tools, options)
        except ProviderError as exc:
            reason = f"provider error: {exc}"
            logger.error(f"Session {ctx.session_id}: {reason}")
            await self._append(ctx, Role.assistant, NoticeContent(kind="provider_error", message=str(exc)))
            return _finish(state, TurnStatus.provider_error, reason)

        ctx.usage = ctx.usage.plus(response.usage)
        await self._emit(
            ctx,
            EngineEventType.model_responded,
            tool_calls=len(response.tool_calls),
            model=response.model_name,
        )

        if not response.has_tool_calls:
            await self._append(ctx, Role.assistant, TextContent(text=response.text), usage=response.usage)
            ctx.last_text = response.text
            return _finish(state, TurnStatus.completed, None)

        await self._append(
            ctx,
            Role.assistant,
            ToolCallsContent(text=response.text, calls=list(response.tool_calls)),
            usage=response.usage,
        )
        ctx.pending_calls = list(response.tool_calls)
        return state

    async def _node_execute_tools(self, state: _TurnState) -> _TurnState:
        """Run pending tool calls sequentially, persisting each result."""
        ctx = state["ctx"]
        while ctx.pending_calls:
            call = ctx.pending_calls[0]

            if ctx.cancel is not None and ctx.cancel.cancelled:
                await self._persist_cancellation(ctx, ctx.cancel.reason)
                return _finish(state, TurnStatus.cancelled, ctx.cancel.reason)

            if ctx.loop_detector.observe(call):
                reason = (
                    f"loop detected: {call.name} requested {ctx.loop_detector.count} times in a row "
                    "with identical arguments"
                )
                logger.warning(f"Session {ctx.session_id}: {reason}")
                await self._persist_cancellation(ctx, reason)
                return _finish(state, TurnStatus.loop_detected, reason)

            await self._emit(ctx, EngineEventType.tool_requested, correlation_id=call.id, tool_name=call.name)
            result = await self._deps.pipeline.execute(
                call,
                ctx.config,
                session_id=ctx.session_id,
                working_dir=ctx.working_dir,
                confirm=ctx.confirm,
                cancel=ctx.cancel,
            )
            await self._append(ctx, Role.tool, ToolResultContent(result=result))
            ctx.pending_calls.pop(0)
            await self._emit(
                ctx,
                EngineEventType.tool_completed,
                correlation_id=call.id,
                tool_name=call.name,
                kind=result.kind.value,
            )

            if result.kind == ResultKind.cancelled:
                reason = ctx.cancel.reason if ctx.cancel is not None else "cancelled"
                await self._persist_cancellation(ctx, reason)
                return _finish(state, TurnStatus.cancelled, reason)
        return state

    async def _node_finish(self, state: _TurnState) -> _TurnState:
        ctx = state["ctx"]
        await self._emit(
            ctx,
            EngineEventType.turn_completed,
            status=state.get("_status"),
            iterations=state["iteration"],
            input_tokens=ctx.usage.input_tokens,
            output_tokens=ctx.usage.output_tokens,
        )
        return state

    def _route(self, state: _TurnState) -> str:
        return "finish" if state.get("_finished") else "tools"

    def _route_after_tools(self, state: _TurnState) -> str:
        return "finish" if state.get("_finished") else "model"

    async def _request(self, ctx: _TurnContext, messages, tools, options: ChatOptions) -> ChatResponse:
        try:
            provider = self._deps.providers.get(ctx.config.provider)
        except KeyError as exc:
            raise ProviderError(f"unknown provider: {ctx.config.provider}") from exc

        async def on_text(chunk: str) -> None:
            await self._emit(ctx, EngineEventType.text_delta, text=chunk)

        return await collect_response(
            provider.send(messages, tools, options),
            on_text=on_text if options.stream else None,
        )

    async def _append(
        self,
        ctx: _TurnContext,
        role: Role,
        content: RecordContent,
        *,
        usage: Optional[TokenUsage] = None,
    ) -> TurnRecord:
        record = TurnRecord(
            session_id=ctx.session_id,
            parent_id=ctx.head_id,
            role=role,
            content=content,
            usage=usage,
            git_branch=ctx.git_branch,
            cwd=ctx.working_dir,
        )
        await self._deps.store.append(ctx.session_id, record)
        ctx.head_id = record.id
        await self._emit(ctx, EngineEventType.record_appended, record_id=record.id, role=role.value)
        return record

    async def _persist_cancellation(self, ctx: _TurnContext, reason: str) -> None:
        """Close the turn in the log: one ``cancelled`` result per pending call,
        or a ``cancelled`` notice when nothing is pending."""
        if not ctx.pending_calls:
            await self._append(ctx, Role.assistant, NoticeContent(kind="cancelled", message=reason))
            return
        while ctx.pending_calls:
            call = ctx.pending_calls.pop(0)
            result = ToolResult(call_id=call.id, tool_name=call.name, kind=ResultKind.cancelled, error=reason)
            await self._append(ctx, Role.tool, ToolResultContent(result=result))

    async def _emit(self, ctx: _TurnContext, type_: EngineEventType, **payload) -> None:
        correlation_id = payload.pop("correlation_id", None)
        tool_name = payload.pop("tool_name", None)
        await self._deps.events.emit(
            EngineEvent(
                type=type_,
                session_id=ctx.session_id,
                correlation_id=correlation_id,
                tool_name=tool_name,
                payload=payload,
            )
        )


def _finish(state: _TurnState, status: TurnStatus, reason: Optional[str]) -> _TurnState:
    state["_finished"] = True
    state["_status"] = status.value
    if reason is not None:
        state["_reason"] = reason
    return state


async def _git_branch(store, working_dir: str) -> Optional[str]:
    reader = getattr(store, "git_branch", None)
    if reader is None or not working_dir:
        return None
    return await reader(working_dir)
