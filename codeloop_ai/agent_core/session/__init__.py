"""Append-only session persistence."""

from .interfaces import SessionStore, parent_chain
from .paths import escape_working_dir, fingerprint, new_session_id
from .store import JsonlSessionStore

__all__ = [
    "JsonlSessionStore",
    "SessionStore",
    "escape_working_dir",
    "fingerprint",
    "new_session_id",
    "parent_chain",
]
