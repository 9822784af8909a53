from __future__ import annotations

from typing import AsyncIterator, List, Sequence

import pytest

from codeloop_ai.agent_core.errors import ProviderError, TransientProviderError
from codeloop_ai.agent_core.providers import (
    ChatDelta,
    ChatMessage,
    ChatOptions,
    ProviderRegistry,
    RetryingChatProvider,
    RetryPolicy,
    ToolSchema,
    collect_response,
)


class _FlakyProvider:
    """Fails ``failures`` times, optionally after yielding a partial delta."""

    id = "flaky"

    def __init__(self, failures: int, *, error: Exception | None = None, partial: bool = False) -> None:
        self.failures = failures
        self.error = error or TransientProviderError("rate limited", provider="flaky", status_code=429)
        self.partial = partial
        self.calls = 0

    async def send(
        self, messages: Sequence[ChatMessage], tools: Sequence[ToolSchema], options: ChatOptions
    ) -> AsyncIterator[ChatDelta]:
        self.calls += 1
        if self.calls <= self.failures:
            if self.partial:
                yield ChatDelta(text="par")
            raise self.error
        yield ChatDelta(text="hello", done=True)


class _SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _wrap(inner: _FlakyProvider, sleep: _SleepRecorder) -> RetryingChatProvider:
    policy = RetryPolicy(max_attempts=3, initial_backoff=0.5, backoff_factor=2.0, max_backoff=8.0, jitter=0)
    return RetryingChatProvider(inner, policy, sleep=sleep)


async def _collect(provider: RetryingChatProvider) -> str:
    response = await collect_response(provider.send([ChatMessage(role="user", content="hi")], [], ChatOptions(model="m")))
    return response.text


def test_backoff_is_bounded() -> None:
    policy = RetryPolicy(initial_backoff=1.0, backoff_factor=3.0, max_backoff=5.0, jitter=0)
    assert [policy.delay(n) for n in range(4)] == [1.0, 3.0, 5.0, 5.0]
    jittered = RetryPolicy(initial_backoff=1.0, jitter=0.5)
    assert all(1.0 <= jittered.delay(0) <= 1.5 for _ in range(20))


@pytest.mark.asyncio
async def test_transient_failures_are_retried() -> None:
    inner, sleep = _FlakyProvider(failures=2), _SleepRecorder()
    assert await _collect(_wrap(inner, sleep)) == "hello"
    assert inner.calls == 3
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts() -> None:
    inner, sleep = _FlakyProvider(failures=5), _SleepRecorder()
    with pytest.raises(TransientProviderError):
        await _collect(_wrap(inner, sleep))
    assert inner.calls == 3
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_fatal_errors_are_not_retried() -> None:
    inner = _FlakyProvider(failures=1, error=ProviderError("bad key", provider="flaky", status_code=401))
    sleep = _SleepRecorder()
    with pytest.raises(ProviderError) as exc_info:
        await _collect(_wrap(inner, sleep))
    assert exc_info.value.status_code == 401
    assert inner.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_no_retry_after_partial_output() -> None:
    inner, sleep = _FlakyProvider(failures=1, partial=True), _SleepRecorder()
    with pytest.raises(ProviderError) as exc_info:
        await _collect(_wrap(inner, sleep))
    assert not isinstance(exc_info.value, TransientProviderError)
    assert "partial output" in str(exc_info.value)
    assert inner.calls == 1


def test_registry_wraps_providers() -> None:
    registry = ProviderRegistry()
    registry.register(_FlakyProvider(failures=0))
    registry.register(type("Plain", (), {"id": "plain", "send": None})(), retry=False)

    assert isinstance(registry.get("flaky"), RetryingChatProvider)
    assert not isinstance(registry.get("plain"), RetryingChatProvider)
    assert registry.has("plain")
    assert sorted(registry.ids()) == ["flaky", "plain"]
    with pytest.raises(KeyError):
        registry.get("missing")
