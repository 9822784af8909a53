"""codeloop-ai: agent execution engine for AI coding-assistant CLIs."""

__version__ = "0.1.0"
