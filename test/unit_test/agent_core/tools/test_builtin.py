from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from codeloop_ai.agent_core.tools.base import ToolContext, ToolOutput
from codeloop_ai.agent_core.tools.builtin import (
    FileReadInput,
    FileWriteInput,
    ShellRunInput,
    read_file,
    register_builtin_tools,
    run_shell,
    write_file,
)
from codeloop_ai.agent_core.tools.registry import ToolRegistry


@pytest.fixture
def ctx(tmp_path: Path) -> ToolContext:
    return ToolContext(session_id="s", call_id="c", working_dir=str(tmp_path))


def test_register_builtin_tools() -> None:
    reg = register_builtin_tools(ToolRegistry())
    assert reg.names() == ["file.read", "file.write", "shell.run"]


@pytest.mark.asyncio
async def test_write_then_read_relative_path(ctx: ToolContext, tmp_path: Path) -> None:
    out = await write_file(FileWriteInput(path="sub/dir/a.txt", content="hello"), ctx)
    assert isinstance(out, ToolOutput) and out.success
    assert (tmp_path / "sub" / "dir" / "a.txt").read_text() == "hello"

    read = await read_file(FileReadInput(path="sub/dir/a.txt"), ctx)
    assert read.success
    assert read.data["content"] == "hello"
    assert read.data["truncated"] is False


@pytest.mark.asyncio
async def test_read_missing_file_reports_failure(ctx: ToolContext) -> None:
    out = await read_file(FileReadInput(path="missing.txt"), ctx)
    assert out.success is False
    assert "File not found" in (out.error or "")


@pytest.mark.asyncio
async def test_read_truncates_at_max_bytes(ctx: ToolContext, tmp_path: Path) -> None:
    (tmp_path / "big.txt").write_text("abcdef")
    out = await read_file(FileReadInput(path="big.txt", max_bytes=3), ctx)
    assert out.data["content"] == "abc"
    assert out.data["truncated"] is True


@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform.startswith("win"), reason="posix shell")
async def test_run_shell_captures_output(ctx: ToolContext) -> None:
    out = await run_shell(ShellRunInput(command="echo hi"), ctx)
    assert out.success
    assert out.data["stdout"].strip() == "hi"
    assert out.data["exit_code"] == 0


@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform.startswith("win"), reason="posix shell")
async def test_run_shell_nonzero_exit_is_failure(ctx: ToolContext) -> None:
    out = await run_shell(ShellRunInput(command="exit 3"), ctx)
    assert out.success is False
    assert out.data["exit_code"] == 3


@pytest.mark.asyncio
async def test_run_shell_missing_cwd(ctx: ToolContext) -> None:
    out = await run_shell(ShellRunInput(command="ls", cwd="/definitely/not/here"), ctx)
    assert out.success is False
    assert "Working directory not found" in (out.error or "")


@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform.startswith("win"), reason="posix shell")
async def test_run_shell_kills_command_when_cancelled(ctx: ToolContext, tmp_path: Path) -> None:
    marker = tmp_path / "done"
    task = asyncio.create_task(run_shell(ShellRunInput(command=f"sleep 0.6; touch {marker}"), ctx))
    await asyncio.sleep(0.2)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    await asyncio.sleep(1.0)
    assert not marker.exists()


@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform.startswith("win"), reason="posix shell")
async def test_run_shell_timeout_kills_background_children(ctx: ToolContext, tmp_path: Path) -> None:
    marker = tmp_path / "late"
    out = await run_shell(ShellRunInput(command=f"(sleep 0.6; touch {marker}) & wait", timeout=0.2), ctx)

    assert out.success is False
    assert "timeout" in (out.error or "")
    await asyncio.sleep(1.0)
    assert not marker.exists()
