"""Provider router: model id -> (model info, adapter).

Rejects unknown models and disabled providers before any stream opens.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

import httpx

from uiforge.catalog import ModelCatalog, ModelInfo
from uiforge.config import ForgeConfig
from uiforge.errors import RequestRejected
from uiforge.health import ProviderAvailability, ProviderHealthMonitor
from uiforge.types import ChatMessage, GenerationRequest, GenerationSettings

from .providers import ADAPTERS, ProviderAdapter

_logger = logging.getLogger(__name__)

AvailabilityFn = Callable[[], ProviderAvailability]


class ProviderRouter:
    """Selects the adapter that serves a model.

    Parameters
    ----------
    catalog:
        Known models.
    adapters:
        One adapter per provider name.
    availability:
        Callable returning the current availability snapshot. If ``None``,
        every provider with an adapter is considered enabled.
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        adapters: dict[str, ProviderAdapter],
        availability: AvailabilityFn | None = None,
    ) -> None:
        self.catalog = catalog
        self._adapters = adapters
        self._availability = availability

    @classmethod
    def from_config(
        cls,
        config: ForgeConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> tuple[ProviderRouter, ProviderHealthMonitor]:
        """Build adapters for every provider plus the health monitor."""
        adapters = {
            name: adapter_cls.from_config(config.provider(name), transport=transport)
            for name, adapter_cls in ADAPTERS.items()
        }
        monitor = ProviderHealthMonitor(
            adapters,
            configured=config.configured_providers(),
            interval=config.health.interval,
            timeout=config.health.timeout,
        )
        return cls(config.build_catalog(), adapters, availability=monitor), monitor

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enabled_providers(self) -> list[str]:
        return [p for p in self._adapters if self._is_enabled(p)]

    def available_models(self) -> list[ModelInfo]:
        enabled = set(self.enabled_providers())
        return [m for m in self.catalog.all() if m.provider in enabled]

    def resolve(self, model_id: str) -> tuple[ModelInfo, ProviderAdapter]:
        """Return the model info and adapter for *model_id*.

        Raises ``RequestRejected`` for unknown models and for providers
        without an adapter or currently disabled.
        """
        info = self.catalog.resolve(model_id)
        adapter = self._adapters.get(info.provider)
        if adapter is None:
            raise RequestRejected(f"Unsupported provider: {info.provider}")
        if not self._is_enabled(info.provider):
            _logger.warning("Rejected %s: provider %s is disabled", model_id, info.provider)
            raise RequestRejected(f"Provider {info.provider} is not enabled")
        return info, adapter

    def build_request(
        self,
        model_id: str,
        messages: Iterable[ChatMessage],
        settings: GenerationSettings,
    ) -> GenerationRequest:
        info, _ = self.resolve(model_id)
        return GenerationRequest(
            provider=info.provider,
            model=info.id,
            messages=tuple(messages),
            settings=settings,
        )

    async def close(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()

    def _is_enabled(self, provider: str) -> bool:
        if self._availability is None:
            return provider in self._adapters
        return self._availability().is_enabled(provider)
