"""Filesystem layout helpers for the session store.

Logs live at ``<state_dir>/projects/<escaped working dir>/<session id>.jsonl``.
The escaped directory name ends with a short hash of the resolved working
directory so that two projects never share a directory even when their
escaped names collide.
"""

import hashlib
import re
import secrets
from pathlib import Path
from typing import Optional

PROJECTS_DIR = "projects"
PROJECT_META_FILE = "project.json"
SESSION_SUFFIX = ".jsonl"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")
_SESSION_ID = re.compile(r"^[A-Za-z0-9_-]{16,64}$")
_MAX_ESCAPED = 80


def resolve_working_dir(working_dir: str) -> str:
    return str(Path(working_dir).expanduser().resolve())


def fingerprint(working_dir: str) -> str:
    resolved = resolve_working_dir(working_dir)
    return hashlib.sha256(resolved.encode("utf-8")).hexdigest()[:12]


def escape_working_dir(working_dir: str) -> str:
    resolved = resolve_working_dir(working_dir)
    escaped = _UNSAFE.sub("-", resolved).strip("-.")[-_MAX_ESCAPED:].lstrip("-.")
    return f"{escaped or 'root'}-{fingerprint(resolved)}"


def new_session_id() -> str:
    return secrets.token_urlsafe(16)


def is_valid_session_id(session_id: str) -> bool:
    return bool(_SESSION_ID.match(session_id))


def read_git_branch(working_dir: str) -> Optional[str]:
    """Best-effort branch name for ``working_dir``, read from ``.git/HEAD``."""
    current = Path(working_dir).expanduser().resolve()
    for candidate in (current, *current.parents):
        git = candidate / ".git"
        if git.is_file():
            # worktrees and submodules: ".git" is a file pointing at the real dir
            text = git.read_text(encoding="utf-8", errors="replace").strip()
            if not text.startswith("gitdir:"):
                return None
            git = (candidate / text.split(":", 1)[1].strip()).resolve()
        if git.is_dir():
            head = git / "HEAD"
            if not head.is_file():
                return None
            ref = head.read_text(encoding="utf-8", errors="replace").strip()
            if ref.startswith("ref:"):
                return ref.split("/", 2)[-1] if ref.startswith("ref: refs/heads/") else ref[4:].strip()
            return ref[:12] or None
    return None
