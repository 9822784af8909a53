from __future__ import annotations

"""Engine event side channel.

Stage transitions, model requests and streamed text are published as
``EngineEvent``s on an ``EventChannel``. Delivery is best effort: subscriber
queues are bounded and drop their oldest event when full, and a failing
observer is logged and ignored. Nothing in the engine waits for a consumer.
"""

import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Union

from .schemas.domain import EngineEvent

logger = logging.getLogger(__name__)

EventObserver = Callable[[EngineEvent], Union[None, Awaitable[None]]]


class EventChannel:
    """Fan-out channel of engine events.

    Args:
        observer: Optional callback (sync or async) invoked for every event.
        maxsize: Capacity of each subscriber queue.
    """

    def __init__(self, observer: Optional[EventObserver] = None, *, maxsize: int = 1000) -> None:
        self._observer = observer
        self._maxsize = maxsize
        self._queues: List[asyncio.Queue[EngineEvent]] = []

    def subscribe(self) -> asyncio.Queue[EngineEvent]:
        queue: asyncio.Queue[EngineEvent] = asyncio.Queue(maxsize=self._maxsize)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[EngineEvent]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    @asynccontextmanager
    async def subscription(self) -> AsyncIterator[asyncio.Queue[EngineEvent]]:
        queue = self.subscribe()
        try:
            yield queue
        finally:
            self.unsubscribe(queue)

    async def emit(self, event: EngineEvent) -> None:
        for queue in list(self._queues):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(event)
        if self._observer is None:
            return
        try:
            outcome = self._observer(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception(f"Event observer failed on {event.type.value}")
