"""
ProviderRegistry: platform name -> MarketplaceOrderProvider.

Adding a marketplace means registering one more provider; the orchestrator
never branches on platform names.
"""

import logging
from typing import Dict, List

from channel_sync.core.exceptions import ProviderNotRegisteredError
from channel_sync.integrations.base import MarketplaceOrderProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    def __init__(self):
        self._providers: Dict[str, MarketplaceOrderProvider] = {}

    def register(self, provider: MarketplaceOrderProvider, platform: str = None) -> None:
        name = platform or provider.platform
        if name in self._providers:
            logger.warning(f"Replacing provider registered for {name}")
        self._providers[name] = provider
        logger.info(f"Registered {provider.__class__.__name__} for {name}")

    def get(self, platform: str) -> MarketplaceOrderProvider:
        try:
            return self._providers[platform]
        except KeyError:
            raise ProviderNotRegisteredError(f"No provider registered for {platform}", platform=platform)

    def has(self, platform: str) -> bool:
        return platform in self._providers

    def platforms(self) -> List[str]:
        return sorted(self._providers)
