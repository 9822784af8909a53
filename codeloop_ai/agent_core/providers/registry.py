from __future__ import annotations

"""Chat provider registry.

Maps provider ids (as referenced by ``AgentConfiguration.provider``) to
adapter instances. Registered providers are wrapped with retry handling
unless they are already wrapped.
"""

import logging
from typing import Dict, List, Optional

from .base import ChatProvider
from .retry import RetryingChatProvider, RetryPolicy

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    In-memory mapping of provider ids to adapters.

    Notes:
        - ``register`` overwrites any existing entry with the same id.
        - ``get`` raises ``KeyError`` if the provider is missing.
    """

    def __init__(self, retry_policy: Optional[RetryPolicy] = None) -> None:
        self._providers: Dict[str, ChatProvider] = {}
        self._retry_policy = retry_policy or RetryPolicy()

    def register(self, provider: ChatProvider, *, retry: bool = True) -> None:
        if retry and not isinstance(provider, RetryingChatProvider):
            provider = RetryingChatProvider(provider, self._retry_policy)
        self._providers[provider.id] = provider
        logger.debug(f"Registered chat provider: {provider.id}")

    def get(self, provider_id: str) -> ChatProvider:
        return self._providers[provider_id]

    def has(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def ids(self) -> List[str]:
        return sorted(self._providers)
