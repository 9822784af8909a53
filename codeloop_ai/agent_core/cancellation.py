from __future__ import annotations

"""Cooperative cancellation.

The caller owns a ``CancellationToken`` and passes it into ``run_turn``. The
turn loop and the pipeline check it at iteration and stage boundaries, so a
running tool executor is never interrupted halfway.
"""

import asyncio
from typing import Optional


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason or "cancelled by caller"

    async def wait(self) -> None:
        await self._event.wait()
