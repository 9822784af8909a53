from __future__ import annotations

"""High-level session service.

``AgentService`` is the application-facing API on top of the turn loop:

- ``start``: create a session for a working directory and run the first turn.
- ``send``: continue a session from its head.
- ``resume``: branch from an earlier record, abandoning a failed continuation
  without rewriting the log.
- ``fork``: copy a session prefix into a new session.

The service is intentionally thin: it delegates execution semantics to
``AgentTurnLoop`` and persistence to the ``SessionStore``.
"""

from dataclasses import dataclass
from typing import Any, List, Optional

from .cancellation import CancellationToken
from .pipeline.confirmation import ConfirmationHandler
from .runtime.engine import AgentTurnLoop
from .schemas.domain import AgentConfiguration, Session, TurnRecord, TurnResult
from .session.interfaces import SessionStore


@dataclass(frozen=True)
class AgentServiceDeps:
    """Dependency bundle for ``AgentService``."""

    loop: AgentTurnLoop
    store: SessionStore


class AgentService:
    """Orchestrate sessions and turns for one configuration."""

    def __init__(self, *, config: AgentConfiguration, deps: AgentServiceDeps) -> None:
        self._config = config
        self._deps = deps

    @property
    def config(self) -> AgentConfiguration:
        return self._config

    def _config_for(self, overrides: Optional[dict[str, Any]]) -> AgentConfiguration:
        if not overrides:
            return self._config
        # dict-shaped rules are coerced; out-of-range values raise ValidationError
        return AgentConfiguration.model_validate({**self._config.model_dump(), **overrides})

    async def start(
        self,
        working_dir: str,
        message: str,
        *,
        confirm: Optional[ConfirmationHandler] = None,
        cancel: Optional[CancellationToken] = None,
        overrides: Optional[dict[str, Any]] = None,
    ) -> TurnResult:
        config = self._config_for(overrides)
        session_id = await self._deps.store.new_session(working_dir)
        return await self._deps.loop.run_turn(session_id, message, config, confirm=confirm, cancel=cancel)

    async def send(
        self,
        session_id: str,
        message: str,
        *,
        confirm: Optional[ConfirmationHandler] = None,
        cancel: Optional[CancellationToken] = None,
        overrides: Optional[dict[str, Any]] = None,
    ) -> TurnResult:
        return await self._deps.loop.run_turn(
            session_id, message, self._config_for(overrides), confirm=confirm, cancel=cancel
        )

    async def resume(
        self,
        session_id: str,
        message: str,
        *,
        from_record: str,
        confirm: Optional[ConfirmationHandler] = None,
        cancel: Optional[CancellationToken] = None,
        overrides: Optional[dict[str, Any]] = None,
    ) -> TurnResult:
        """Continue the session from ``from_record`` instead of its head."""
        return await self._deps.loop.run_turn(
            session_id,
            message,
            self._config_for(overrides),
            resume_from=from_record,
            confirm=confirm,
            cancel=cancel,
        )

    async def fork(self, session_id: str, upto_id: Optional[str] = None) -> str:
        return await self._deps.store.fork(session_id, upto_id)

    async def sessions(self, working_dir: Optional[str] = None) -> List[Session]:
        return await self._deps.store.list_sessions(working_dir)

    async def transcript(self, session_id: str, leaf_id: Optional[str] = None) -> List[TurnRecord]:
        return await self._deps.store.history(session_id, leaf_id)
