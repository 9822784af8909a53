from __future__ import annotations

"""Exception hierarchy for the agent execution engine.

Tool-level failures (unknown tool, bad arguments, refusals, executor crashes)
are *not* exceptions: the pipeline turns them into ``ToolResult`` values that
are fed back to the model. The exceptions below cover the failures that abort
a turn or make a session unreadable.
"""

from typing import Optional


class AgentCoreError(Exception):
    """Base class for all engine errors."""


class ProviderError(AgentCoreError):
    """Non-retryable model backend failure (auth, malformed request, bad payload)."""

    def __init__(self, message: str, *, provider: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Rate limit, 5xx or transport failure. Eligible for retry."""


class TurnLimitExceededError(AgentCoreError):
    """The turn loop hit its iteration ceiling without a final answer."""


class TurnCancelledError(AgentCoreError):
    """The caller cancelled an in-flight turn."""


class LoopDetectedError(AgentCoreError):
    """The model kept requesting the same tool call."""


class SessionStoreError(AgentCoreError):
    """Base class for session store failures."""


class SessionNotFoundError(SessionStoreError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"session not found: {session_id}")
        self.session_id = session_id


class InvalidRecordError(SessionStoreError):
    """A record cannot be appended (bad parent link, wrong session)."""


class StoreCorruptionError(SessionStoreError):
    """A session log holds a malformed entry that is not a truncated tail."""

    def __init__(self, message: str, *, path: Optional[str] = None, line_number: Optional[int] = None) -> None:
        super().__init__(message)
        self.path = path
        self.line_number = line_number
