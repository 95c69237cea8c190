"""Provider availability: which backends may be offered right now.

The enabled set is an explicit, process-wide snapshot. It is built from
configuration at startup and replaced wholesale by periodic health
checks. Readers (the router, the orchestrator, the CLI) only ever see a
complete snapshot and never mutate it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from uiforge.llm.providers import ProviderAdapter

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderAvailability:
    """Immutable snapshot of enabled providers."""

    enabled: frozenset[str] = frozenset()
    checked_at: float = field(default_factory=time.time)
    probed: bool = False  # False until the first health check ran

    def is_enabled(self, provider: str) -> bool:
        return provider in self.enabled


class ProviderHealthMonitor:
    """Owns the availability snapshot and refreshes it on an interval.

    Parameters
    ----------
    adapters:
        Adapters keyed by provider name.
    configured:
        Providers enabled by configuration. Only these are ever probed;
        a provider missing from this set stays disabled.
    interval:
        Seconds between periodic refreshes.
    """

    def __init__(
        self,
        adapters: dict[str, ProviderAdapter],
        configured: Iterable[str],
        interval: float = 60.0,
        timeout: float = 5.0,
    ) -> None:
        self._adapters = adapters
        self._configured = frozenset(configured)
        self._interval = interval
        self._timeout = timeout
        self._snapshot = ProviderAvailability(
            enabled=frozenset(p for p in self._configured if p in adapters),
        )
        self._task: asyncio.Task[None] | None = None

    @property
    def snapshot(self) -> ProviderAvailability:
        return self._snapshot

    def __call__(self) -> ProviderAvailability:
        return self._snapshot

    async def refresh(self) -> ProviderAvailability:
        """Probe every configured provider and publish a new snapshot."""
        names = sorted(p for p in self._configured if p in self._adapters)
        results = await asyncio.gather(
            *(self._probe(name) for name in names),
        )
        enabled = frozenset(n for n, ok in zip(names, results) if ok)
        for name in names:
            was = self._snapshot.is_enabled(name)
            now = name in enabled
            if was and not now:
                _logger.warning("Provider %s became unreachable; disabling", name)
            elif now and not was:
                _logger.info("Provider %s is reachable again", name)
        self._snapshot = ProviderAvailability(enabled=enabled, probed=True)
        return self._snapshot

    async def _probe(self, name: str) -> bool:
        try:
            return await asyncio.wait_for(
                self._adapters[name].probe(), timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            _logger.info("Health probe for %s timed out", name)
            return False

    async def run_periodic(self) -> None:
        """Refresh forever, once per interval. Cancel the task to stop."""
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.refresh()
            except Exception:
                _logger.exception("Provider health refresh failed")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_periodic())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
