"""Tool contracts, registry and argument validation."""

from .base import ToolContext, ToolContract, ToolOutput, ToolRunner
from .builtin import FILE_READ, FILE_WRITE, SHELL_RUN, register_builtin_tools
from .registry import ToolRegistry
from .validation import ArgumentValidationError, validate_arguments

__all__ = [
    "ArgumentValidationError",
    "FILE_READ",
    "FILE_WRITE",
    "SHELL_RUN",
    "ToolContext",
    "ToolContract",
    "ToolOutput",
    "ToolRegistry",
    "ToolRunner",
    "register_builtin_tools",
    "validate_arguments",
]
