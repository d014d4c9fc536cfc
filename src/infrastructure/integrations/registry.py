"""Integration Registry - adapters by platform name."""

import logging
from typing import Dict, List, Optional

from .base import IntegrationAdapter, IntegrationError

logger = logging.getLogger(__name__)


class IntegrationRegistry:
    """
    Usage:
        registry = IntegrationRegistry()
        registry.register(DullyAdapter())
        dully = registry.get_or_raise("dully")
    """

    def __init__(self):
        self._adapters: Dict[str, IntegrationAdapter] = {}

    def register(self, adapter: IntegrationAdapter):
        if adapter.name in self._adapters:
            logger.warning(f"Adapter '{adapter.name}' already registered, replacing")
        self._adapters[adapter.name] = adapter
        logger.info(f"Registered integration adapter: {adapter.name}")

    def get(self, platform: str) -> Optional[IntegrationAdapter]:
        return self._adapters.get(platform)

    def get_or_raise(self, platform: str) -> IntegrationAdapter:
        adapter = self._adapters.get(platform)
        if adapter is None:
            raise IntegrationError(f"Integration adapter '{platform}' not found")
        return adapter

    def get_all(self) -> List[IntegrationAdapter]:
        return list(self._adapters.values())

    def get_all_names(self) -> List[str]:
        return list(self._adapters.keys())

    def has(self, platform: str) -> bool:
        return platform in self._adapters

    def get_status(self, platform: str) -> Optional[dict]:
        adapter = self._adapters.get(platform)
        if adapter is None:
            return None
        return {"name": adapter.name, "connected": adapter.test_connection()}

    def get_all_statuses(self) -> List[dict]:
        return [self.get_status(name) for name in self._adapters]

    def disconnect_all(self):
        for adapter in self._adapters.values():
            try:
                adapter.disconnect()
            except Exception:
                logger.exception(f"Error disconnecting {adapter.name}")

    def clear(self):
        self._adapters.clear()
