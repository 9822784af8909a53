"""
Monitoring and Tracing Configuration Module.

Optional integration with Pydantic Logfire. When enabled it traces:
- model requests made through pydantic-ai
- HTTP calls made through httpx (OpenAI-compatible provider)

Logfire is an optional dependency (``pip install codeloop-ai[monitoring]``);
when it is missing or disabled the engine runs unchanged.
"""

import logging
from typing import Optional

from .config import LogfireConfig

logger = logging.getLogger(__name__)


def initialize_logfire(config: Optional[LogfireConfig] = None, *, service_version: str = "0.0.0") -> bool:
    """
    Initialize Pydantic Logfire for monitoring and tracing.

    Args:
        config: Logfire settings. Defaults to a disabled configuration.
        service_version: Version reported to Logfire.

    Returns:
        True if Logfire was configured, False otherwise.
    """
    config = config or LogfireConfig()
    if not config.enabled:
        logger.debug("Logfire monitoring is disabled. Set CODELOOP_LOGFIRE__ENABLED=true to enable.")
        return False

    if not config.token:
        logger.warning(
            "Logfire is enabled but no token is set. "
            "Monitoring will not work. Set CODELOOP_LOGFIRE__TOKEN to enable Logfire."
        )
        return False

    try:
        import logfire
    except ImportError:
        logger.warning(
            "Logfire is enabled but the 'logfire' package is not installed. "
            "Install it with: pip install 'codeloop-ai[monitoring]'"
        )
        return False

    logfire.configure(
        token=config.token,
        service_name=config.service_name,
        service_version=service_version,
        environment=config.environment,
    )

    if config.trace_pydantic_ai:
        try:
            logfire.instrument_pydantic_ai()
            logger.info("Logfire: Pydantic AI instrumentation enabled")
        except Exception as e:
            logger.warning(f"Failed to instrument Pydantic AI: {e}")

    if config.trace_httpx:
        try:
            logfire.instrument_httpx()
            logger.info("Logfire: HTTPX instrumentation enabled")
        except Exception as e:
            logger.warning(f"Failed to instrument HTTPX: {e}")

    logger.info(f"Logfire monitoring initialized: service={config.service_name}, environment={config.environment}")
    return True
