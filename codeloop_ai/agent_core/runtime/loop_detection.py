"""Detect a model stuck requesting the same tool call over and over."""

from typing import Optional

from ..schemas.domain import ToolCall


class LoopDetector:
    """Count consecutive identical tool calls (same name and arguments).

    ``observe`` returns True once the same call has been seen ``threshold``
    times in a row. A ``threshold`` of ``None`` disables detection.
    """

    def __init__(self, threshold: Optional[int]) -> None:
        self._threshold = threshold
        self._last: Optional[str] = None
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    def observe(self, call: ToolCall) -> bool:
        fingerprint = call.fingerprint()
        if fingerprint == self._last:
            self._count += 1
        else:
            self._last = fingerprint
            self._count = 1
        return self._threshold is not None and self._count >= self._threshold
