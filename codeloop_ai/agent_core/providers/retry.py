from __future__ import annotations

"""Retry wrapper for chat providers.

Transient failures (rate limits, 5xx, transport errors) are retried with
bounded exponential backoff. A retry is only attempted while nothing has
been yielded to the caller yet: once part of a stream was delivered, a
failure is surfaced as a fatal ``ProviderError``.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Sequence

from ..errors import ProviderError, TransientProviderError
from .base import ChatDelta, ChatMessage, ChatOptions, ChatProvider, ToolSchema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_backoff: float = 0.5
    backoff_factor: float = 2.0
    max_backoff: float = 8.0
    jitter: float = 0.1

    def delay(self, retries: int) -> float:
        """Backoff before retry number ``retries`` (0-based)."""
        base = min(self.initial_backoff * (self.backoff_factor**retries), self.max_backoff)
        if self.jitter <= 0:
            return base
        return base + random.uniform(0, base * self.jitter)


class RetryingChatProvider:
    """Wrap a ``ChatProvider`` with retry/backoff on transient failures."""

    def __init__(
        self,
        inner: ChatProvider,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._inner = inner
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self.id = inner.id

    @property
    def inner(self) -> ChatProvider:
        return self._inner

    async def send(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolSchema],
        options: ChatOptions,
    ) -> AsyncIterator[ChatDelta]:
        retries = 0
        while True:
            emitted = False
            try:
                async for delta in self._inner.send(messages, tools, options):
                    emitted = True
                    yield delta
                return
            except TransientProviderError as exc:
                if emitted:
                    raise ProviderError(
                        f"{self.id}: stream interrupted after partial output: {exc}",
                        provider=self.id,
                        status_code=exc.status_code,
                    ) from exc
                if retries + 1 >= self._policy.max_attempts:
                    logger.error(f"{self.id}: giving up after {retries + 1} attempts: {exc}")
                    raise
                delay = self._policy.delay(retries)
                retries += 1
                logger.warning(
                    f"{self.id}: transient failure ({exc}); retrying in {delay:.2f}s "
                    f"(attempt {retries + 1}/{self._policy.max_attempts})"
                )
                await self._sleep(delay)
