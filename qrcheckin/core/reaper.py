"""Periodic out-of-band reaping of expired used-token records."""

from __future__ import annotations

import asyncio

import structlog

from qrcheckin.core.errors import QRCheckinError, StoreUnavailable
from qrcheckin.core.store import UsedTokenStore

logger = structlog.get_logger()


class Reaper:
    def __init__(self, store: UsedTokenStore, interval_seconds: float = 30.0):
        self._store = store
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        removed = await self._store.reap()
        if removed:
            logger.debug("used_tokens.reaped", removed=removed)
        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except StoreUnavailable as e:
                # next tick retries; records only cost memory meanwhile
                logger.warning("used_tokens.reap_failed", error=str(e))
            except (QRCheckinError, OSError):
                logger.exception("used_tokens.reap_crashed")

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._loop(), name="used-token-reaper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
