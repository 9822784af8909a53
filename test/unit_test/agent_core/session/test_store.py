from __future__ import annotations

import asyncio
import json
import os
import time
from pathlib import Path
from typing import List

import pytest

from codeloop_ai.agent_core.errors import InvalidRecordError, SessionNotFoundError, StoreCorruptionError
from codeloop_ai.agent_core.schemas.domain import (
    Role,
    TextContent,
    ToolCall,
    ToolCallsContent,
    TurnRecord,
)
from codeloop_ai.agent_core.session import store as store_module
from codeloop_ai.agent_core.session.paths import escape_working_dir
from codeloop_ai.agent_core.session.store import JsonlSessionStore


@pytest.fixture
def store(state_dir: Path) -> JsonlSessionStore:
    return JsonlSessionStore(state_dir)


async def _append_linear(store: JsonlSessionStore, session_id: str, n: int) -> List[TurnRecord]:
    records: List[TurnRecord] = []
    parent = None
    for i in range(n):
        role = Role.user if i % 2 == 0 else Role.assistant
        rec = TurnRecord(session_id=session_id, parent_id=parent, role=role, content=TextContent(text=f"m{i}"))
        await store.append(session_id, rec)
        records.append(rec)
        parent = rec.id
    return records


@pytest.mark.asyncio
async def test_new_session_creates_sharded_log(store: JsonlSessionStore, workdir: Path) -> None:
    sid = await store.new_session(str(workdir))
    assert len(sid) >= 16
    path = store.root / escape_working_dir(str(workdir)) / f"{sid}.jsonl"
    assert path.exists()
    assert await store.load(sid) == []


@pytest.mark.asyncio
async def test_distinct_projects_do_not_collide(store: JsonlSessionStore, tmp_path: Path) -> None:
    a = tmp_path / "a" / "x"
    b = tmp_path / "a-x"
    a.mkdir(parents=True)
    b.mkdir()
    assert store.project_dir(str(a)) != store.project_dir(str(b))


@pytest.mark.asyncio
async def test_append_and_reload_preserves_order_and_chain(store: JsonlSessionStore, workdir: Path) -> None:
    sid = await store.new_session(str(workdir))
    written = await _append_linear(store, sid, 7)

    reloaded = await JsonlSessionStore(store.root.parent).load(sid)
    assert reloaded == written
    assert reloaded[0].parent_id is None
    for i in range(1, len(reloaded)):
        assert reloaded[i].parent_id == reloaded[i - 1].id


@pytest.mark.asyncio
async def test_truncated_tail_is_discarded(store: JsonlSessionStore, workdir: Path) -> None:
    sid = await store.new_session(str(workdir))
    written = await _append_linear(store, sid, 3)
    path = Path((await store.get_session(sid)).path)

    extra = TurnRecord(session_id=sid, parent_id=written[-1].id, role=Role.user, content=TextContent(text="lost"))
    line = extra.to_json_line().encode()
    with open(path, "ab") as fh:
        fh.write(line[: len(line) // 2])

    fresh = JsonlSessionStore(store.root.parent)
    assert await fresh.load(sid) == written

    # the next append cuts the partial line off instead of fusing with it
    follow = TurnRecord(session_id=sid, parent_id=written[-1].id, role=Role.user, content=TextContent(text="next"))
    await fresh.append(sid, follow)
    assert await JsonlSessionStore(store.root.parent).load(sid) == written + [follow]


@pytest.mark.asyncio
async def test_malformed_final_line_is_discarded(store: JsonlSessionStore, workdir: Path) -> None:
    sid = await store.new_session(str(workdir))
    written = await _append_linear(store, sid, 2)
    path = Path((await store.get_session(sid)).path)
    with open(path, "ab") as fh:
        fh.write(b'{"not": "a record"}\n')

    assert await JsonlSessionStore(store.root.parent).load(sid) == written


@pytest.mark.asyncio
async def test_mid_file_corruption_is_fatal(store: JsonlSessionStore, workdir: Path) -> None:
    sid = await store.new_session(str(workdir))
    await _append_linear(store, sid, 3)
    path = Path((await store.get_session(sid)).path)

    lines = path.read_bytes().splitlines(keepends=True)
    lines[1] = b"{garbage\n"
    path.write_bytes(b"".join(lines))

    with pytest.raises(StoreCorruptionError) as exc_info:
        await JsonlSessionStore(store.root.parent).load(sid)
    assert exc_info.value.line_number == 2


@pytest.mark.asyncio
async def test_dangling_parent_in_file_is_fatal(store: JsonlSessionStore, workdir: Path) -> None:
    sid = await store.new_session(str(workdir))
    written = await _append_linear(store, sid, 2)
    path = Path((await store.get_session(sid)).path)

    bad = written[1].model_copy(update={"id": "x" * 32, "parent_id": "missing"})
    good = TurnRecord(session_id=sid, parent_id=written[1].id, role=Role.user, content=TextContent(text="after"))
    with open(path, "ab") as fh:
        fh.write(bad.to_json_line().encode())
        fh.write(good.to_json_line().encode())

    with pytest.raises(StoreCorruptionError):
        await JsonlSessionStore(store.root.parent).load(sid)


@pytest.mark.asyncio
async def test_append_rejects_bad_links(store: JsonlSessionStore, workdir: Path) -> None:
    sid = await store.new_session(str(workdir))
    with pytest.raises(InvalidRecordError):
        await store.append(
            sid, TurnRecord(session_id=sid, parent_id="nope", role=Role.user, content=TextContent(text="a"))
        )

    first = TurnRecord(session_id=sid, role=Role.user, content=TextContent(text="a"))
    await store.append(sid, first)
    with pytest.raises(InvalidRecordError):
        await store.append(sid, TurnRecord(session_id=sid, role=Role.user, content=TextContent(text="b")))
    with pytest.raises(InvalidRecordError):
        await store.append(sid, first)
    with pytest.raises(InvalidRecordError):
        await store.append(
            sid, TurnRecord(session_id="other", parent_id=first.id, role=Role.user, content=TextContent(text="c"))
        )


@pytest.mark.asyncio
async def test_unknown_session(store: JsonlSessionStore) -> None:
    with pytest.raises(SessionNotFoundError):
        await store.load("A" * 22)
    with pytest.raises(SessionNotFoundError):
        await store.load("../../etc/passwd")


@pytest.mark.asyncio
async def test_history_follows_branch(store: JsonlSessionStore, workdir: Path) -> None:
    sid = await store.new_session(str(workdir))
    root, answer, *_ = await _append_linear(store, sid, 4)

    branch = TurnRecord(session_id=sid, parent_id=answer.id, role=Role.user, content=TextContent(text="retry"))
    await store.append(sid, branch)

    chain = await store.history(sid)
    assert [r.id for r in chain] == [root.id, answer.id, branch.id]
    assert len(await store.load(sid)) == 5

    with pytest.raises(InvalidRecordError):
        await store.history(sid, "missing")


@pytest.mark.asyncio
async def test_fork_copies_prefix(store: JsonlSessionStore, workdir: Path) -> None:
    sid = await store.new_session(str(workdir))
    written = await _append_linear(store, sid, 4)
    source_bytes = Path((await store.get_session(sid)).path).read_bytes()

    forked = await store.fork(sid, upto_id=written[1].id)
    assert forked != sid
    copies = await store.load(forked)
    assert [r.id for r in copies] == [written[0].id, written[1].id]
    assert all(r.session_id == forked for r in copies)
    assert copies[0].metadata["forked_from"] == sid
    assert Path((await store.get_session(sid)).path).read_bytes() == source_bytes

    follow = TurnRecord(session_id=forked, parent_id=written[1].id, role=Role.user, content=TextContent(text="new"))
    await store.append(forked, follow)
    assert len(await store.load(forked)) == 3


@pytest.mark.asyncio
async def test_get_and_list_sessions(store: JsonlSessionStore, workdir: Path, tmp_path: Path) -> None:
    first = await store.new_session(str(workdir))
    await _append_linear(store, first, 4)
    other_dir = tmp_path / "other"
    other_dir.mkdir()
    second = await store.new_session(str(other_dir))
    await _append_linear(store, second, 1)

    info = await store.get_session(first)
    assert info.working_dir == str(workdir.resolve())
    assert info.turn_count == 2
    assert info.record_count == 4
    assert info.title == "m0"

    assert {s.id for s in await store.list_sessions()} == {first, second}
    assert [s.id for s in await store.list_sessions(str(workdir))] == [first]


@pytest.mark.asyncio
async def test_record_round_trip_through_disk(store: JsonlSessionStore, workdir: Path) -> None:
    sid = await store.new_session(str(workdir))
    call = ToolCall(name="file.write", arguments={"path": "a.txt", "content": "x", "opts": {"mode": [1, 2, {"k": None}]}})
    rec = TurnRecord(session_id=sid, role=Role.assistant, content=ToolCallsContent(text="", calls=[call]))
    await store.append(sid, rec)

    path = Path((await store.get_session(sid)).path)
    raw = json.loads(path.read_text().strip())
    assert raw["content"]["type"] == "tool_calls"
    assert (await JsonlSessionStore(store.root.parent).load(sid)) == [rec]


@pytest.mark.asyncio
@pytest.mark.skipif(os.name != "posix", reason="posix permissions")
async def test_log_files_are_private(store: JsonlSessionStore, workdir: Path) -> None:
    sid = await store.new_session(str(workdir))
    path = Path((await store.get_session(sid)).path)
    assert path.stat().st_mode & 0o077 == 0


@pytest.mark.asyncio
async def test_cancelled_append_still_lands_and_keeps_index(
    store: JsonlSessionStore, workdir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    sid = await store.new_session(str(workdir))
    first = (await _append_linear(store, sid, 1))[0]

    original = store_module._durable_append

    def slow_append(path, data, valid_size):
        time.sleep(0.3)
        return original(path, data, valid_size)

    monkeypatch.setattr(store_module, "_durable_append", slow_append)
    second = TurnRecord(session_id=sid, parent_id=first.id, role=Role.assistant, content=TextContent(text="late"))
    task = asyncio.create_task(store.append(sid, second))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    monkeypatch.setattr(store_module, "_durable_append", original)

    third = TurnRecord(session_id=sid, parent_id=second.id, role=Role.user, content=TextContent(text="after"))
    await store.append(sid, third)

    reloaded = await JsonlSessionStore(store.root.parent).load(sid)
    assert [r.id for r in reloaded] == [first.id, second.id, third.id]
