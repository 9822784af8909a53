from __future__ import annotations

"""Tool registry.

The registry is a closed table mapping tool names to ``ToolContract``
entries. New tools are added by registering an entry; the pipeline never
inspects executor types.
"""

import logging
from typing import Dict, Iterator, List

from ..schemas.domain import AgentConfiguration
from .base import ToolContract

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    In-memory mapping of tool names to contracts.

    Notes:
        - ``register`` overwrites any existing entry with the same name.
        - ``get`` raises ``KeyError`` if the tool is missing.
    """

    def __init__(self) -> None:
        self._tools: Dict[str, ToolContract] = {}

    def register(self, tool: ToolContract) -> None:
        if tool.name in self._tools:
            logger.debug(f"Replacing registered tool: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> ToolContract:
        """
        Retrieve a registered tool by name.

        Raises:
            KeyError: If no tool is registered with the given name.
        """
        return self._tools[name]

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> List[str]:
        return sorted(self._tools)

    def exposed(self, config: AgentConfiguration) -> List[ToolContract]:
        """Tools visible to the model under the given configuration."""
        return [self._tools[n] for n in self.names() if config.exposes(n)]

    def __iter__(self) -> Iterator[ToolContract]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
