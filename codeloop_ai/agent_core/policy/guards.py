from __future__ import annotations

"""Argument screening and output redaction.

These checks complement rule evaluation:

- ``screen_path`` rejects traversal and system locations outright and flags
  sensitive files (keys, credentials, env files) for confirmation.
- ``redact`` scrubs known secret formats from tool output before it is
  persisted or returned to the model.
"""

import re
from dataclasses import dataclass
from pathlib import PurePath
from typing import Any, Optional

from ..schemas.domain import Verdict

_SECRET_PATTERNS = (
    re.compile(r"sk-[A-Za-z0-9_-]{10,}"),
    re.compile(r"ghp_[A-Za-z0-9]{10,}"),
    re.compile(r"xox[bpa]-[A-Za-z0-9-]{10,}"),
    re.compile(r"AKIA[0-9A-Z]{16}"),
    re.compile(r"-----BEGIN [A-Z ]*PRIVATE KEY-----[\s\S]*?-----END [A-Z ]*PRIVATE KEY-----"),
)

_SYSTEM_DIRS = ("/etc", "/bin", "/sbin", "/usr", "/boot", "/dev", "/proc", "/sys", "/System", "/Library")

_SENSITIVE_NAMES = frozenset({".env", "id_rsa", "id_ed25519", "id_ecdsa", "credentials", ".netrc", ".pgpass"})
_SENSITIVE_SUFFIXES = (".pem", ".key", ".p12", ".pfx")
_SENSITIVE_DIRS = frozenset({".ssh", ".aws", ".gnupg"})


@dataclass(frozen=True)
class PathIssue:
    verdict: Verdict
    reason: str


def screen_path(raw: str) -> Optional[PathIssue]:
    """Classify a path argument.

    Returns ``None`` for ordinary paths, a ``deny`` issue for traversal or
    system locations, and an ``ask`` issue for sensitive files.
    """
    path = PurePath(raw)
    if ".." in path.parts:
        return PathIssue(Verdict.deny, f"path traversal is not allowed: {raw}")

    normalized = raw.replace("\\", "/")
    for sys_dir in _SYSTEM_DIRS:
        if normalized == sys_dir or normalized.startswith(sys_dir + "/"):
            return PathIssue(Verdict.deny, f"system directory is off limits: {raw}")
    if re.match(r"^[A-Za-z]:/Windows(/|$)", normalized, re.IGNORECASE):
        return PathIssue(Verdict.deny, f"system directory is off limits: {raw}")

    name = path.name
    if name in _SENSITIVE_NAMES or name.startswith(".env.") or name.endswith(_SENSITIVE_SUFFIXES):
        return PathIssue(Verdict.ask, f"sensitive file: {raw}")
    if _SENSITIVE_DIRS.intersection(path.parts):
        return PathIssue(Verdict.ask, f"sensitive location: {raw}")
    return None


def redact(text: str) -> str:
    out = text
    for pat in _SECRET_PATTERNS:
        out = pat.sub("<redacted>", out)
    return out


def redact_payload(value: Any) -> Any:
    """Apply ``redact`` to every string inside a JSON-like payload."""
    if isinstance(value, str):
        return redact(value)
    if isinstance(value, dict):
        return {k: redact_payload(v) for k, v in value.items()}
    if isinstance(value, list):
        return [redact_payload(v) for v in value]
    return value
