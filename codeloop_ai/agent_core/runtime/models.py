from __future__ import annotations

"""Turn loop dependency bundle and LangGraph state types.

- ``TurnLoopDeps`` collects the store, providers, pipeline and event channel
  the loop needs.
- ``_TurnContext`` carries the per-invocation objects (configuration,
  confirmation handler, cancellation token) and the mutable progress of one
  turn: the current head record and pending tool calls.
- ``_TurnState`` is the state passed between LangGraph nodes.
"""

from dataclasses import dataclass, field
from typing import List, NotRequired, Optional, Required, TypedDict

from ..cancellation import CancellationToken
from ..events import EventChannel
from ..pipeline.confirmation import ConfirmationHandler
from ..pipeline.pipeline import ExecutionPipeline
from ..providers.registry import ProviderRegistry
from ..schemas.domain import AgentConfiguration, TokenUsage, ToolCall
from ..session.interfaces import SessionStore
from .loop_detection import LoopDetector


@dataclass(frozen=True)
class TurnLoopDeps:
    """Dependency bundle for ``AgentTurnLoop``.

    Typically assembled by ``codeloop_ai.agent_core.factory``.
    """

    store: SessionStore
    providers: ProviderRegistry
    pipeline: ExecutionPipeline
    events: EventChannel


@dataclass
class _TurnContext:
    session_id: str
    working_dir: str
    config: AgentConfiguration
    head_id: str
    git_branch: Optional[str] = None
    confirm: Optional[ConfirmationHandler] = None
    cancel: Optional[CancellationToken] = None
    loop_detector: LoopDetector = field(default_factory=lambda: LoopDetector(None))
    pending_calls: List[ToolCall] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    last_text: Optional[str] = None


class _TurnState(TypedDict):
    """Mutable LangGraph state for one turn.

    Required keys:

    - ``session_id``: session being advanced.
    - ``iteration``: model calls made so far.
    - ``limit``: effective iteration ceiling.
    - ``ctx``: the ``_TurnContext`` of this invocation.

    Optional keys:

    - ``_finished`` / ``_status`` / ``_reason``: used to terminate the graph.
    """

    session_id: Required[str]
    iteration: Required[int]
    limit: Required[int]
    ctx: Required[_TurnContext]
    _finished: NotRequired[bool]
    _status: NotRequired[str]
    _reason: NotRequired[str]
