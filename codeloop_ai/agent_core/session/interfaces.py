from __future__ import annotations

"""Session store protocol.

The store is the only writer of session logs. Logs are append-only: records
are never edited or deleted, so resuming is a reload and forking is a copy of
a prefix into a new session.
"""

from typing import List, Optional, Protocol

from ..schemas.domain import Session, TurnRecord


class SessionStore(Protocol):
    """Append-only, durable store of turn records grouped by session."""

    async def new_session(self, working_dir: str) -> str: ...

    async def append(self, session_id: str, record: TurnRecord) -> None: ...

    async def load(self, session_id: str) -> List[TurnRecord]: ...

    async def history(self, session_id: str, leaf_id: Optional[str] = None) -> List[TurnRecord]: ...

    async def get_session(self, session_id: str) -> Session: ...

    async def fork(
        self, session_id: str, upto_id: Optional[str] = None, working_dir: Optional[str] = None
    ) -> str: ...

    async def list_sessions(self, working_dir: Optional[str] = None) -> List[Session]: ...


def parent_chain(records: List[TurnRecord], leaf_id: Optional[str] = None) -> List[TurnRecord]:
    """Return the records on the path from the root to ``leaf_id``.

    Without ``leaf_id`` the last appended record is the leaf.

    Raises:
        KeyError: if ``leaf_id`` (or a parent on the way) is unknown.
    """
    if not records:
        return []
    by_id = {r.id: r for r in records}
    current: Optional[TurnRecord] = by_id[leaf_id] if leaf_id is not None else records[-1]
    chain: List[TurnRecord] = []
    while current is not None:
        chain.append(current)
        current = by_id[current.parent_id] if current.parent_id is not None else None
    chain.reverse()
    return chain
