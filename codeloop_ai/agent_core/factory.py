from __future__ import annotations

"""Convenience factories for wiring the agent core.

Small helpers that build the default tool registry, provider registry,
session store, turn loop and service from ``Settings``. Deployments and tests
can pass their own components to any builder instead of the defaults.
"""

from typing import Optional

from codeloop_ai.core.config import Settings, get_settings
from codeloop_ai.core.logging_config import setup_logging
from codeloop_ai.core.monitoring import initialize_logfire

from .events import EventChannel, EventObserver
from .pipeline import ConfirmationHandler, ExecutionPipeline, SessionApprovals
from .providers import ProviderRegistry, RetryPolicy
from .providers.openai_compat import OpenAICompatibleChatProvider
from .providers.pydantic_ai import PydanticAIChatProvider
from .runtime import AgentTurnLoop, TurnLoopDeps
from .service import AgentService, AgentServiceDeps
from .session import JsonlSessionStore, SessionStore
from .tools import ToolRegistry
from .tools.builtin import register_builtin_tools


def build_default_tool_registry() -> ToolRegistry:
    """Build a ``ToolRegistry`` holding ``file.read``, ``file.write`` and ``shell.run``."""
    return register_builtin_tools(ToolRegistry())


def build_retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry.max_attempts,
        initial_backoff=settings.retry.initial_backoff,
        backoff_factor=settings.retry.backoff_factor,
        max_backoff=settings.retry.max_backoff,
    )


def build_provider_registry(settings: Settings) -> ProviderRegistry:
    """Register the pydantic-ai adapter and the OpenAI-compatible HTTP adapter."""
    registry = ProviderRegistry(build_retry_policy(settings))
    registry.register(PydanticAIChatProvider())
    registry.register(
        OpenAICompatibleChatProvider(
            base_url=settings.openai.base_url,
            api_key=settings.openai.api_key,
            timeout=settings.openai.timeout,
        )
    )
    return registry


def build_session_store(settings: Settings) -> JsonlSessionStore:
    return JsonlSessionStore(settings.state_dir)


def build_turn_loop(
    settings: Optional[Settings] = None,
    *,
    tools: Optional[ToolRegistry] = None,
    providers: Optional[ProviderRegistry] = None,
    store: Optional[SessionStore] = None,
    events: Optional[EventChannel] = None,
    confirmation: Optional[ConfirmationHandler] = None,
    observer: Optional[EventObserver] = None,
) -> AgentTurnLoop:
    """Construct an ``AgentTurnLoop`` with defaults for anything not supplied."""
    settings = settings or get_settings()
    events = events if events is not None else EventChannel(observer)
    pipeline = ExecutionPipeline(
        tools if tools is not None else build_default_tool_registry(),
        events=events,
        confirmation=confirmation,
        approvals=SessionApprovals(),
    )
    deps = TurnLoopDeps(
        store=store if store is not None else build_session_store(settings),
        providers=providers if providers is not None else build_provider_registry(settings),
        pipeline=pipeline,
        events=events,
    )
    return AgentTurnLoop(deps)


def build_agent_service(
    settings: Optional[Settings] = None,
    *,
    configure_logging: bool = False,
    **loop_overrides,
) -> AgentService:
    """Build an ``AgentService`` from settings.

    With ``configure_logging`` the process-wide logging and (when enabled)
    Logfire are initialized as well, which is what CLI entry points want.
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging(
            log_level=settings.log_level,
            log_format=settings.log_format,
            enable_file=settings.enable_file_logging,
            log_file_dir=settings.log_file_dir,
        )
        initialize_logfire(settings.logfire)
    loop = build_turn_loop(settings, **loop_overrides)
    return AgentService(
        config=settings.agent_configuration(),
        deps=AgentServiceDeps(loop=loop, store=loop.deps.store),
    )
