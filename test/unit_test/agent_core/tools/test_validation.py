from __future__ import annotations

import pytest

from codeloop_ai.agent_core.tools.builtin import FILE_WRITE, SHELL_RUN, FileWriteInput
from codeloop_ai.agent_core.tools.validation import ArgumentValidationError, args_size_bytes, validate_arguments


def test_valid_arguments_get_defaults_applied() -> None:
    params = validate_arguments(FILE_WRITE, {"path": "a.txt", "content": "hi"})
    assert isinstance(params, FileWriteInput)
    assert params.encoding == "utf-8"
    assert params.create_dirs is True


def test_missing_required_field_is_reported() -> None:
    with pytest.raises(ArgumentValidationError) as exc_info:
        validate_arguments(FILE_WRITE, {"path": "a.txt"})
    err = exc_info.value
    assert err.tool_name == "file.write"
    assert err.issues == ["content: Field required"]
    assert "invalid arguments for file.write" in str(err)


def test_wrong_type_shows_offending_value() -> None:
    with pytest.raises(ArgumentValidationError) as exc_info:
        validate_arguments(SHELL_RUN, {"command": "ls", "timeout": "soon"})
    (issue,) = exc_info.value.issues
    assert issue.startswith("timeout:")
    assert "(got 'soon')" in issue


def test_oversized_arguments_are_rejected() -> None:
    args = {"path": "a.txt", "content": "x" * 100}
    assert args_size_bytes(args) > 100
    with pytest.raises(ArgumentValidationError, match="too large"):
        validate_arguments(FILE_WRITE, args, max_bytes=50)
