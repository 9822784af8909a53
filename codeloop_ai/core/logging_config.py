"""
Logging Configuration Module.

Centralized logging configuration for codeloop-ai: console and optional file
logging, simple/detailed/JSON formats, and per-module levels.

Unlike a server process, the engine is embedded in CLIs and tests, so
nothing is configured at import time. Call ``setup_logging`` once from the
application entry point (``codeloop_ai.agent_core.factory`` does this when
asked to).
"""

import logging
from pathlib import Path
from typing import Optional

# Define log formats
SIMPLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(funcName)s() - %(message)s"

JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
    '"module": "%(filename)s", "function": "%(funcName)s", "line": %(lineno)d, '
    '"message": "%(message)s"}'
)

LOG_FILE_NAME = "codeloop_ai.log"

# Module-specific log levels
MODULE_LOG_LEVELS = {
    # Engine modules
    "codeloop_ai.agent_core": "INFO",
    "codeloop_ai.agent_core.runtime": "INFO",
    "codeloop_ai.agent_core.pipeline": "INFO",
    "codeloop_ai.agent_core.policy": "INFO",
    "codeloop_ai.agent_core.session": "INFO",
    "codeloop_ai.agent_core.providers": "INFO",
    # Third-party libraries (reduce noise)
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "asyncio": "WARNING",
    "langgraph": "WARNING",
}


def _format_string(log_format: str) -> str:
    if log_format == "json":
        return JSON_FORMAT
    if log_format == "simple":
        return SIMPLE_FORMAT
    return DETAILED_FORMAT


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    enable_file: bool = False,
    log_file_dir: Optional[str] = None,
) -> None:
    """
    Configure logging for the application.

    Args:
        log_level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Defaults to INFO.
        log_format: Format name (simple, detailed, json). Defaults to detailed.
        enable_file: Whether to also log to ``<log_file_dir>/codeloop_ai.log``.
        log_file_dir: Directory for the log file. Defaults to ``logs``.
    """
    level = (log_level or "INFO").upper()
    fmt = log_format or "detailed"

    formatter = logging.Formatter(_format_string(fmt), datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all levels, filter at handler level

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_file: Optional[Path] = None
    if enable_file:
        log_dir = Path(log_file_dir or "logs").expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / LOG_FILE_NAME
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)  # Always log DEBUG to file
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for module_name, module_level in MODULE_LOG_LEVELS.items():
        module_level = "DEBUG" if level == "DEBUG" and module_name.startswith("codeloop_ai") else module_level
        logging.getLogger(module_name).setLevel(module_level)

    root_logger.info(f"Logging configured: level={level}, format={fmt}, log_file={log_file}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The module name (typically __name__)

    Returns:
        A logger instance
    """
    return logging.getLogger(name)
