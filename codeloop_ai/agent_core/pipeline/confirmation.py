from __future__ import annotations

"""Human-in-the-loop confirmation.

When a tool call's verdict is ``ask`` the pipeline awaits a
``ConfirmationHandler``. The handler is supplied by the caller (a terminal
prompt, an IDE dialog, or an automated policy in tests and CI) and returns a
``ConfirmationDecision``. Approving with ``scope="session"`` remembers the
call's signature so identical calls later in the same session run without
asking again.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, Protocol, Set

from ..schemas.domain import ToolCall, ToolRisk

ApprovalScope = Literal["once", "session"]


@dataclass(frozen=True)
class ConfirmationRequest:
    session_id: str
    call: ToolCall
    signature: str
    risk: ToolRisk
    reason: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    @property
    def tool_name(self) -> str:
        return self.call.name


@dataclass(frozen=True)
class ConfirmationDecision:
    approved: bool
    reason: Optional[str] = None
    scope: ApprovalScope = "once"

    @classmethod
    def approve(cls, scope: ApprovalScope = "once") -> "ConfirmationDecision":
        return cls(approved=True, scope=scope)

    @classmethod
    def reject(cls, reason: str = "rejected by user") -> "ConfirmationDecision":
        return cls(approved=False, reason=reason)


class ConfirmationHandler(Protocol):
    async def request_confirmation(self, request: ConfirmationRequest) -> ConfirmationDecision: ...


class StaticConfirmationPolicy:
    """Answer every confirmation the same way. Records the requests it saw."""

    def __init__(self, approve: bool, *, scope: ApprovalScope = "once", reason: str = "rejected by policy") -> None:
        self._decision = ConfirmationDecision(approved=approve, reason=None if approve else reason, scope=scope)
        self.requests: list[ConfirmationRequest] = []

    async def request_confirmation(self, request: ConfirmationRequest) -> ConfirmationDecision:
        self.requests.append(request)
        return self._decision


class CallbackConfirmationHandler:
    """Adapt a plain coroutine function to ``ConfirmationHandler``."""

    def __init__(self, callback: Callable[[ConfirmationRequest], Awaitable[ConfirmationDecision]]) -> None:
        self._callback = callback

    async def request_confirmation(self, request: ConfirmationRequest) -> ConfirmationDecision:
        return await self._callback(request)


class SessionApprovals:
    """Signatures approved with ``scope="session"``, per session."""

    def __init__(self) -> None:
        self._approved: Dict[str, Set[str]] = {}

    def remember(self, session_id: str, signature: str) -> None:
        self._approved.setdefault(session_id, set()).add(signature)

    def is_approved(self, session_id: str, signature: str) -> bool:
        return signature in self._approved.get(session_id, ())

    def clear(self, session_id: str) -> None:
        self._approved.pop(session_id, None)
