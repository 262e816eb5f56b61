"""
Gatehouse Backend: Store Janitor
================================

What:  Background task that periodically evicts expired CSRF pairs and
       rate-limit buckets.
Why:   Both stores only prune lazily on some write paths. Callers that never
       come back would otherwise leave entries behind forever.
When:  Started and stopped by the application lifespan.
"""

import asyncio
import logging
from typing import Optional, Protocol, Sequence

logger = logging.getLogger(__name__)


class Sweepable(Protocol):
    def sweep(self) -> int: ...


class StoreJanitor:
    """Runs `sweep()` on every store every `interval_seconds`."""

    def __init__(self, stores: Sequence[Sweepable], interval_seconds: float = 300):
        self.stores = list(stores)
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep_once(self) -> int:
        removed = sum(store.sweep() for store in self.stores)
        if removed:
            logger.debug("Janitor evicted %d expired entries", removed)
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.sweep_once()
            except Exception:
                # Keep the loop alive; the next tick retries the sweep
                logger.exception("Janitor sweep failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="gatehouse-janitor")
        logger.info("Store janitor started (interval=%ss)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Store janitor stopped")
