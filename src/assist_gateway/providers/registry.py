"""Provider registry mapping provider ids to adapters.

The orchestrator resolves every candidate in the fallback chain through this
registry; ids that were never registered are skipped rather than treated as
failures.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from assist_gateway.domain.contracts import ProviderAdapter
from assist_gateway.observability.structured_log import log_json

logger = logging.getLogger(__name__)


class ProviderRegistry:
    def __init__(self) -> None:
        self._providers: Dict[str, ProviderAdapter] = {}

    def register(self, name: str, provider: ProviderAdapter) -> None:
        key = (name or "").strip().lower()
        if not key:
            raise ValueError("Provider name is required.")
        self._providers[key] = provider
        log_json(logger, "provider.registered", provider=key)

    def get(self, name: str) -> Optional[ProviderAdapter]:
        return self._providers.get((name or "").strip().lower())

    def names(self) -> List[str]:
        return sorted(self._providers.keys())

    async def aclose(self) -> None:
        for name in self.names():
            provider = self._providers[name]
            try:
                await provider.aclose()
            except Exception as exc:
                logger.warning("Failed to close provider %s: %s", name, exc)
