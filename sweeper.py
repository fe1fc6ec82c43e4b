"""Periodic eviction of expired sessions, tokens and codes.

Expired entries are also rejected lazily where they are used; the sweep only
keeps the maps from growing. Eviction is silent apart from debug/info logs.
"""

import asyncio
import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

SWEEP_INTERVAL = 5 * 60


class Sweepable(Protocol):
    def sweep(self) -> int: ...


class ExpirySweeper:
    """Cancellable background task owned by the app lifespan."""

    def __init__(self, stores: dict, interval: float = SWEEP_INTERVAL):
        self.stores: dict[str, Sweepable] = stores
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep_once(self) -> dict:
        """Run one pass over every store; returns removed counts by store name."""
        removed = {}
        for name, store in self.stores.items():
            try:
                removed[name] = store.sweep()
            except Exception:
                # One broken store must not stop the others or the loop
                logger.exception(f"[SWEEP] Sweeping {name} failed")
                removed[name] = 0
        if any(removed.values()):
            logger.info(f"[SWEEP] Removed expired entries: {removed}")
        else:
            logger.debug("[SWEEP] Nothing to remove")
        return removed

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            self.sweep_once()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="expiry-sweeper")
        logger.info(f"[SWEEP] Started (every {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[SWEEP] Stopped")
