from __future__ import annotations

"""Argument validation for tool calls.

Arguments are validated against the tool's pydantic parameter model, which
also fills declared defaults for omitted optional fields. Failures are
reported as a readable, one-line-per-field diff so the model can correct its
next attempt.
"""

import json
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ValidationError

from .base import ToolContract


class ArgumentValidationError(ValueError):
    """Raised when tool arguments do not satisfy the tool schema."""

    def __init__(self, tool_name: str, issues: List[str]) -> None:
        self.tool_name = tool_name
        self.issues = issues
        super().__init__(format_issues(tool_name, issues))


def format_issues(tool_name: str, issues: List[str]) -> str:
    lines = [f"invalid arguments for {tool_name}:"]
    lines.extend(f"  - {issue}" for issue in issues)
    return "\n".join(lines)


def describe_validation_error(exc: ValidationError) -> List[str]:
    issues: List[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        msg = err.get("msg", "invalid value")
        if err.get("type") == "missing":
            issues.append(f"{loc}: {msg}")
            continue
        got = err.get("input")
        issues.append(f"{loc}: {msg} (got {_short_repr(got)})")
    return issues


def args_size_bytes(arguments: Mapping[str, Any]) -> int:
    return len(json.dumps(dict(arguments), default=str).encode("utf-8"))


def validate_arguments(
    tool: ToolContract,
    arguments: Mapping[str, Any],
    *,
    max_bytes: Optional[int] = None,
) -> BaseModel:
    """Validate raw model-provided arguments into the tool's parameter model.

    Raises:
        ArgumentValidationError: if the payload is too large or violates the schema.
    """
    if max_bytes is not None:
        size = args_size_bytes(arguments)
        if size > max_bytes:
            raise ArgumentValidationError(tool.name, [f"<root>: tool args too large ({size} > {max_bytes} bytes)"])
    try:
        return tool.schema.model_validate(dict(arguments))
    except ValidationError as exc:
        raise ArgumentValidationError(tool.name, describe_validation_error(exc)) from exc


def _short_repr(value: Any, limit: int = 60) -> str:
    text = repr(value)
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text
