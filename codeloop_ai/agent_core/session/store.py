from __future__ import annotations

"""JSON Lines session store.

Durability model
----------------

- Every record is one JSON object terminated by ``\\n``.
- A record is written with a single ``os.write`` loop on an ``O_APPEND``
  descriptor and followed by ``os.fsync`` before ``append`` returns.
- If a previous write was interrupted, the log ends in a partial line. Load
  discards that tail with a warning; the next append cuts it off first so new
  records never fuse with garbage.
- A malformed line anywhere *before* the tail, or a record whose parent is
  unknown, means the log was tampered with or damaged and raises
  ``StoreCorruptionError``.

Blocking file I/O runs in worker threads via ``asyncio.to_thread``.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from ..errors import InvalidRecordError, SessionNotFoundError, StoreCorruptionError
from ..schemas.domain import Role, Session, TextContent, TurnRecord
from .interfaces import parent_chain
from .paths import (
    PROJECT_META_FILE,
    PROJECTS_DIR,
    SESSION_SUFFIX,
    escape_working_dir,
    fingerprint,
    is_valid_session_id,
    new_session_id,
    read_git_branch,
    resolve_working_dir,
)

logger = logging.getLogger(__name__)


@dataclass
class _SessionIndex:
    path: Path
    ids: Set[str] = field(default_factory=set)
    head_id: Optional[str] = None
    valid_size: int = 0
    loaded: bool = False


class JsonlSessionStore:
    """File-backed ``SessionStore``.

    Args:
        state_dir: Per-user state directory. Logs go under ``state_dir/projects``.
    """

    def __init__(self, state_dir: str | os.PathLike[str]) -> None:
        self._root = Path(state_dir).expanduser() / PROJECTS_DIR
        self._index: Dict[str, _SessionIndex] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def root(self) -> Path:
        return self._root

    def project_dir(self, working_dir: str) -> Path:
        return self._root / escape_working_dir(working_dir)

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    async def new_session(self, working_dir: str) -> str:
        session_id = new_session_id()
        path = await asyncio.to_thread(self._create_session_file, working_dir, session_id)
        self._index[session_id] = _SessionIndex(path=path, loaded=True)
        logger.info(f"Created session {session_id} for {resolve_working_dir(working_dir)}")
        return session_id

    async def append(self, session_id: str, record: TurnRecord) -> None:
        """Durably append one record.

        Raises:
            InvalidRecordError: if the record belongs to another session, reuses
                an id, or its parent is not already in the log.
            SessionNotFoundError: if the session does not exist.
        """
        if record.session_id != session_id:
            raise InvalidRecordError(f"record {record.id} belongs to session {record.session_id}, not {session_id}")
        async with self._lock(session_id):
            idx = await self._ensure_index(session_id)
            self._check_link(idx, record)
            await self._write(idx, [record], idx.valid_size)
        logger.debug(f"Appended {record.role.value} record {record.id} to session {session_id}")

    async def load(self, session_id: str) -> List[TurnRecord]:
        async with self._lock(session_id):
            return await self._load_unlocked(session_id)

    async def _load_unlocked(self, session_id: str) -> List[TurnRecord]:
        path = self._locate(session_id)
        records, valid_size = await asyncio.to_thread(_read_log, path)
        self._index[session_id] = _SessionIndex(
            path=path,
            ids={r.id for r in records},
            head_id=records[-1].id if records else None,
            valid_size=valid_size,
            loaded=True,
        )
        return records

    async def history(self, session_id: str, leaf_id: Optional[str] = None) -> List[TurnRecord]:
        records = await self.load(session_id)
        try:
            return parent_chain(records, leaf_id)
        except KeyError as exc:
            raise InvalidRecordError(f"unknown record {leaf_id} in session {session_id}") from exc

    async def get_session(self, session_id: str) -> Session:
        records = await self.load(session_id)
        path = self._index[session_id].path
        meta = await asyncio.to_thread(_read_project_meta, path.parent)
        return _summarize(session_id, path, meta, records)

    async def fork(
        self,
        session_id: str,
        upto_id: Optional[str] = None,
        working_dir: Optional[str] = None,
    ) -> str:
        """Start a new session whose first records copy a prefix of another.

        The copied prefix is the parent chain ending at ``upto_id`` (default:
        the source head). The source log is not touched.
        """
        chain = await self.history(session_id, upto_id)
        if working_dir is None:
            source = await self.get_session(session_id)
            working_dir = source.working_dir
        new_id = await self.new_session(working_dir)
        if not chain:
            return new_id

        copies = [
            r.model_copy(update={"session_id": new_id, "metadata": {**r.metadata, "forked_from": session_id}})
            for r in chain
        ]
        async with self._lock(new_id):
            await self._write(self._index[new_id], copies, 0)
        logger.info(f"Forked session {session_id} at {copies[-1].id} into {new_id} ({len(copies)} records)")
        return new_id

    async def list_sessions(self, working_dir: Optional[str] = None) -> List[Session]:
        """Sessions newest first, optionally restricted to one working directory."""
        if working_dir is not None:
            dirs = [self.project_dir(working_dir)]
        else:
            dirs = await asyncio.to_thread(lambda: sorted(p for p in self._root.glob("*") if p.is_dir()))

        sessions: List[Session] = []
        for project in dirs:
            files = await asyncio.to_thread(lambda d=project: sorted(d.glob(f"*{SESSION_SUFFIX}")))
            for path in files:
                session_id = path.name[: -len(SESSION_SUFFIX)]
                self._index.setdefault(session_id, _SessionIndex(path=path))
                try:
                    sessions.append(await self.get_session(session_id))
                except StoreCorruptionError as exc:
                    logger.warning(f"Skipping corrupt session log {path}: {exc}")
        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return sessions

    async def git_branch(self, working_dir: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(read_git_branch, working_dir)
        except OSError as exc:
            logger.debug(f"Could not read git branch for {working_dir}: {exc}")
            return None

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _locate(self, session_id: str) -> Path:
        idx = self._index.get(session_id)
        if idx is not None and idx.path.exists():
            return idx.path
        if not is_valid_session_id(session_id):
            raise SessionNotFoundError(session_id)
        matches = list(self._root.glob(f"*/{session_id}{SESSION_SUFFIX}"))
        if not matches:
            raise SessionNotFoundError(session_id)
        return matches[0]

    async def _ensure_index(self, session_id: str) -> _SessionIndex:
        idx = self._index.get(session_id)
        if idx is None or not idx.loaded:
            await self._load_unlocked(session_id)
            idx = self._index[session_id]
        return idx

    async def _write(self, idx: _SessionIndex, records: List[TurnRecord], valid_size: int) -> None:
        """Write ``records`` in one durable append and update the index.

        A cancelled caller still waits for the worker thread and records the
        new size before the lock is released, then re-raises the cancellation.
        """
        payload = "".join(r.to_json_line() for r in records).encode("utf-8")
        write = asyncio.ensure_future(asyncio.to_thread(_durable_append, idx.path, payload, valid_size))
        interrupted: Optional[asyncio.CancelledError] = None
        while True:
            try:
                new_size = await asyncio.shield(write)
                break
            except asyncio.CancelledError as exc:
                if write.cancelled():
                    raise
                interrupted = exc
        idx.valid_size = new_size
        idx.ids.update(r.id for r in records)
        idx.head_id = records[-1].id
        if interrupted is not None:
            raise interrupted

    @staticmethod
    def _check_link(idx: _SessionIndex, record: TurnRecord) -> None:
        if record.id in idx.ids:
            raise InvalidRecordError(f"duplicate record id {record.id}")
        if not idx.ids:
            if record.parent_id is not None:
                raise InvalidRecordError(f"first record {record.id} must not have a parent")
            return
        if record.parent_id is None:
            raise InvalidRecordError(f"record {record.id} has no parent")
        if record.parent_id not in idx.ids:
            raise InvalidRecordError(f"parent {record.parent_id} of record {record.id} is not in the session")

    def _create_session_file(self, working_dir: str, session_id: str) -> Path:
        resolved = resolve_working_dir(working_dir)
        project = self.project_dir(resolved)
        project.mkdir(parents=True, exist_ok=True)
        meta_path = project / PROJECT_META_FILE
        if not meta_path.exists():
            tmp = meta_path.with_suffix(".tmp")
            meta = {"working_dir": resolved, "fingerprint": fingerprint(resolved)}
            tmp.write_text(json.dumps(meta), encoding="utf-8")
            os.replace(tmp, meta_path)
        path = project / f"{session_id}{SESSION_SUFFIX}"
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
        _fsync_dir(project)
        return path


def _durable_append(path: Path, data: bytes, valid_size: int) -> int:
    """Append ``data`` to ``path`` and fsync. Returns the new file size.

    Bytes past ``valid_size`` are a partial or malformed tail from an
    interrupted write and are truncated before appending.
    """
    fd = os.open(path, os.O_RDWR | os.O_APPEND | os.O_CREAT, 0o600)
    try:
        size = os.fstat(fd).st_size
        if size > valid_size:
            logger.warning(f"Discarding {size - valid_size} trailing bytes of {path} left by an interrupted write")
            os.ftruncate(fd, valid_size)
            size = valid_size
        if size > 0 and os.pread(fd, 1, size - 1) != b"\n":
            data = b"\n" + data
        view = memoryview(data)
        while view:
            written = os.write(fd, view)
            view = view[written:]
        os.fsync(fd)
        return size + len(data)
    finally:
        os.close(fd)


def _read_log(path: Path) -> Tuple[List[TurnRecord], int]:
    """Parse a session log.

    Returns the records plus the byte offset where valid content ends.
    """
    try:
        data = path.read_bytes()
    except FileNotFoundError as exc:
        raise SessionNotFoundError(path.stem) from exc

    lines = data.split(b"\n")
    last_index = len(lines) - 1
    while last_index > 0 and not lines[last_index].strip():
        last_index -= 1

    records: List[TurnRecord] = []
    seen: Set[str] = set()
    offset = 0
    valid_size = 0
    for i, raw in enumerate(lines):
        has_newline = i < len(lines) - 1
        end = offset + len(raw) + (1 if has_newline else 0)
        if not raw.strip():
            offset = end
            if has_newline:
                valid_size = end
            continue
        try:
            record = TurnRecord.model_validate_json(raw)
        except ValidationError as exc:
            if i == last_index:
                logger.warning(f"Discarding truncated final entry at line {i + 1} of {path}")
                break
            raise StoreCorruptionError(
                f"malformed entry at line {i + 1} of {path}", path=str(path), line_number=i + 1
            ) from exc
        _check_record(record, path, i + 1, seen, first=not records)
        records.append(record)
        seen.add(record.id)
        offset = end
        valid_size = end
    return records, valid_size


def _check_record(record: TurnRecord, path: Path, line_number: int, seen: Set[str], *, first: bool) -> None:
    if record.session_id != path.stem:
        raise StoreCorruptionError(
            f"entry at line {line_number} of {path} belongs to session {record.session_id}",
            path=str(path),
            line_number=line_number,
        )
    if record.id in seen:
        raise StoreCorruptionError(
            f"duplicate record id at line {line_number} of {path}", path=str(path), line_number=line_number
        )
    if first:
        if record.parent_id is not None:
            raise StoreCorruptionError(
                f"first entry of {path} has parent {record.parent_id}", path=str(path), line_number=line_number
            )
    elif record.parent_id not in seen:
        raise StoreCorruptionError(
            f"entry at line {line_number} of {path} has unknown parent {record.parent_id}",
            path=str(path),
            line_number=line_number,
        )


def _read_project_meta(project_dir: Path) -> Dict[str, str]:
    meta_path = project_dir / PROJECT_META_FILE
    if not meta_path.exists():
        return {}
    return json.loads(meta_path.read_text(encoding="utf-8"))


def _summarize(session_id: str, path: Path, meta: Dict[str, str], records: List[TurnRecord]) -> Session:
    if records:
        created_at = records[0].timestamp
        updated_at = records[-1].timestamp
    else:
        created_at = updated_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)

    working_dir = meta.get("working_dir") or next((r.cwd for r in records if r.cwd), "") or ""
    title = next(
        (r.content.text for r in records if r.role == Role.user and isinstance(r.content, TextContent)),
        None,
    )
    return Session(
        id=session_id,
        working_dir=working_dir,
        fingerprint=meta.get("fingerprint") or (fingerprint(working_dir) if working_dir else ""),
        created_at=created_at,
        updated_at=updated_at,
        turn_count=sum(1 for r in records if r.role == Role.user),
        record_count=len(records),
        head_id=records[-1].id if records else None,
        git_branch=next((r.git_branch for r in reversed(records) if r.git_branch), None),
        title=title[:80] if title else None,
        path=str(path),
    )


def _fsync_dir(directory: Path) -> None:
    if os.name != "posix":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)
