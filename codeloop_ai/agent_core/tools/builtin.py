"""Built-in tools: file read/write and shell command execution.

Each tool is a ``ToolContract`` pairing a pydantic input model with an async
executor. Executors report expected failures through ``ToolOutput`` with
``success=False``; unexpected exceptions are left to the pipeline, which turns
them into ``tool_error`` results.
"""

import asyncio
import os
import signal
import time
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from codeloop_ai.core.logging_config import get_logger

from ..schemas.domain import ToolRisk
from .base import ToolContext, ToolContract, ToolOutput
from .registry import ToolRegistry

logger = get_logger(__name__)


class FileReadInput(BaseModel):
    """Input schema for file read operation."""

    path: str = Field(..., description="Path of the file to read, absolute or relative to the working directory")
    encoding: str = Field(default="utf-8", description="File encoding (default: utf-8)")
    max_bytes: Optional[int] = Field(default=None, ge=1, description="Truncate content after this many bytes")


class FileWriteInput(BaseModel):
    """Input schema for file write operation."""

    path: str = Field(..., description="Path of the file to write, absolute or relative to the working directory")
    content: str = Field(..., description="Content to write to the file")
    encoding: str = Field(default="utf-8", description="File encoding (default: utf-8)")
    create_dirs: bool = Field(default=True, description="Create parent directories if they don't exist")


class ShellRunInput(BaseModel):
    """Input schema for command execution."""

    command: str = Field(..., min_length=1, description="Shell command to execute")
    cwd: Optional[str] = Field(default=None, description="Working directory (defaults to the session's)")
    timeout: float = Field(default=30.0, gt=0, description="Timeout in seconds (default: 30)")


def _resolve(path: str, ctx: ToolContext) -> Path:
    p = Path(path).expanduser()
    if not p.is_absolute():
        p = Path(ctx.working_dir) / p
    return p


async def read_file(args: FileReadInput, ctx: ToolContext) -> ToolOutput:
    file_path = _resolve(args.path, ctx)
    if not file_path.exists():
        return ToolOutput(success=False, error=f"File not found: {file_path}")
    if not file_path.is_file():
        return ToolOutput(success=False, error=f"Path is not a file: {file_path}")

    try:
        raw = await asyncio.to_thread(file_path.read_bytes)
    except PermissionError as e:
        return ToolOutput(success=False, error=f"Permission denied reading {file_path}: {e}")

    truncated = args.max_bytes is not None and len(raw) > args.max_bytes
    if truncated:
        raw = raw[: args.max_bytes]
    try:
        content = raw.decode(args.encoding, errors="strict" if not truncated else "ignore")
    except UnicodeDecodeError as e:
        return ToolOutput(success=False, error=f"Encoding error reading {file_path}: {e}")

    logger.info(f"Read file: {file_path} ({len(raw)} bytes)")
    return ToolOutput(
        data={"path": str(file_path), "content": content, "truncated": truncated},
        display=f"read {file_path.name} ({len(raw)} bytes)",
    )


async def write_file(args: FileWriteInput, ctx: ToolContext) -> ToolOutput:
    file_path = _resolve(args.path, ctx)

    def _write() -> int:
        if args.create_dirs:
            file_path.parent.mkdir(parents=True, exist_ok=True)
        return file_path.write_text(args.content, encoding=args.encoding)

    try:
        written = await asyncio.to_thread(_write)
    except PermissionError as e:
        return ToolOutput(success=False, error=f"Permission denied writing to {file_path}: {e}")
    except FileNotFoundError as e:
        return ToolOutput(success=False, error=f"Parent directory missing for {file_path}: {e}")

    logger.info(f"Wrote file: {file_path} ({written} chars)")
    return ToolOutput(
        data={"path": str(file_path), "chars_written": written},
        display=f"wrote {file_path.name}",
    )


async def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    """Kill the shell and every process it started, then reap it."""
    # background children keep the group alive after the shell itself exits
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        logger.debug(f"Process group {process.pid} already exited")
    await process.wait()


async def run_shell(args: ShellRunInput, ctx: ToolContext) -> ToolOutput:
    cwd = args.cwd or ctx.working_dir
    if not os.path.isdir(cwd):
        return ToolOutput(success=False, error=f"Working directory not found: {cwd}")

    logger.info(f"Executing command: {args.command} (cwd={cwd})")
    start_time = time.monotonic()
    process = await asyncio.create_subprocess_shell(
        args.command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        start_new_session=True,
    )
    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=args.timeout)
    except asyncio.TimeoutError:
        await _kill_process_group(process)
        return ToolOutput(
            success=False,
            error=f"Command execution timeout after {args.timeout} seconds",
            data={"command": args.command, "duration_seconds": time.monotonic() - start_time},
        )
    except BaseException:
        # the caller was cancelled; the command must not outlive the call
        logger.warning(f"Killing command interrupted before completion: {args.command}")
        await _kill_process_group(process)
        raise

    duration = time.monotonic() - start_time
    exit_code = process.returncode
    stdout = stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else ""
    stderr = stderr_bytes.decode("utf-8", errors="replace") if stderr_bytes else ""
    logger.info(f"Command completed with exit code {exit_code} (duration: {duration:.2f}s)")

    data = {
        "command": args.command,
        "exit_code": exit_code,
        "stdout": stdout,
        "stderr": stderr,
        "duration_seconds": round(duration, 3),
    }
    if exit_code != 0:
        return ToolOutput(success=False, data=data, error=f"command exited with status {exit_code}: {stderr.strip()}")
    return ToolOutput(data=data, display=f"$ {args.command} (exit 0)")


FILE_READ = ToolContract(
    name="file.read",
    description="Read a text file from the workspace.",
    schema=FileReadInput,
    run=read_file,
    risk=ToolRisk.read,
    signature_argument="path",
    path_arguments=("path",),
)

FILE_WRITE = ToolContract(
    name="file.write",
    description="Create or overwrite a text file in the workspace.",
    schema=FileWriteInput,
    run=write_file,
    risk=ToolRisk.write,
    signature_argument="path",
    path_arguments=("path",),
)

SHELL_RUN = ToolContract(
    name="shell.run",
    description="Run a shell command and capture its output.",
    schema=ShellRunInput,
    run=run_shell,
    risk=ToolRisk.exec,
    signature_argument="command",
    path_arguments=("cwd",),
)


def register_builtin_tools(registry: ToolRegistry) -> ToolRegistry:
    for tool in (FILE_READ, FILE_WRITE, SHELL_RUN):
        registry.register(tool)
    return registry
