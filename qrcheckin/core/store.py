"""Used-token stores: atomic check-and-set of consumed nonces.

A record lives until the expiry of the token it belongs to. After that the
token is rejected as expired before the store is ever consulted, so reaping is
a memory concern only.
"""

from __future__ import annotations

import asyncio
import hashlib
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from qrcheckin.core.errors import StoreUnavailable
from qrcheckin.core.log import nonce_tag
from qrcheckin.db.models import UsedToken

logger = structlog.get_logger()


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class UsedTokenStore(ABC):
    @abstractmethod
    async def try_consume(self, nonce: str, expires_at: int) -> bool:
        """Record ``nonce`` as consumed. True only for the first caller, ever."""

    @abstractmethod
    async def is_consumed(self, nonce: str) -> bool:
        """Read-only membership test; never records anything."""

    @abstractmethod
    async def reap(self, now: int | None = None) -> int:
        """Drop records whose token expired before ``now``. Returns how many."""

    @abstractmethod
    async def size(self) -> int:
        """Number of records currently held."""


class _Shard:
    __slots__ = ("lock", "entries", "consumes")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict[str, tuple[int, int]] = {}  # nonce -> (consumed_at, expires_at)
        self.consumes = 0


class InMemoryUsedTokenStore(UsedTokenStore):
    """Sharded dict store, safe across threads and event loops.

    Each shard has its own lock; the critical section never awaits. Every
    ``reap_every`` consumes on a shard, that shard is swept inline while its
    lock is already held.
    """

    def __init__(self, shards: int = 16, *, reap_every: int = 256, clock: Callable[[], int] = now_ms):
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._shards = [_Shard() for _ in range(shards)]
        self._reap_every = reap_every
        self._clock = clock

    def _shard_for(self, nonce: str) -> _Shard:
        h = hashlib.blake2b(nonce.encode("utf-8"), digest_size=8).digest()
        return self._shards[int.from_bytes(h, "big") % len(self._shards)]

    @staticmethod
    def _sweep(shard: _Shard, now: int) -> int:
        expired = [k for k, (_, exp) in shard.entries.items() if exp < now]
        for k in expired:
            del shard.entries[k]
        return len(expired)

    async def try_consume(self, nonce: str, expires_at: int) -> bool:
        return self.try_consume_sync(nonce, expires_at)

    def try_consume_sync(self, nonce: str, expires_at: int) -> bool:
        shard = self._shard_for(nonce)
        with shard.lock:
            if nonce in shard.entries:
                return False
            now = self._clock()
            shard.entries[nonce] = (now, expires_at)
            shard.consumes += 1
            if self._reap_every and shard.consumes % self._reap_every == 0:
                self._sweep(shard, now)
            return True

    async def is_consumed(self, nonce: str) -> bool:
        return nonce in self

    async def reap(self, now: int | None = None) -> int:
        # sweep off the event loop; foreground calls only contend per shard
        return await asyncio.to_thread(self.reap_sync, now)

    def reap_sync(self, now: int | None = None) -> int:
        now = self._clock() if now is None else now
        removed = 0
        # one shard at a time: foreground calls wait on at most one sweep
        for shard in self._shards:
            with shard.lock:
                removed += self._sweep(shard, now)
        return removed

    async def size(self) -> int:
        return len(self)

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total

    def __contains__(self, nonce: str) -> bool:
        shard = self._shard_for(nonce)
        with shard.lock:
            return nonce in shard.entries


class SqlUsedTokenStore(UsedTokenStore):
    """SQLAlchemy-backed store. The primary-key insert is the conditional write."""

    def __init__(self, sessions: async_sessionmaker, *, clock: Callable[[], int] = now_ms):
        self._sessions = sessions
        self._clock = clock

    async def try_consume(self, nonce: str, expires_at: int) -> bool:
        try:
            async with self._sessions() as s:
                s.add(UsedToken(nonce=nonce, consumed_at=self._clock(), expires_at=expires_at))
                try:
                    await s.commit()
                except IntegrityError:
                    await s.rollback()
                    return False
        except SQLAlchemyError as e:
            logger.error("used_token_store.write_failed", nonce=nonce_tag(nonce), error=str(e))
            raise StoreUnavailable("used-token store write failed") from e
        except OSError as e:
            logger.error("used_token_store.io_failed", nonce=nonce_tag(nonce), error=str(e))
            raise StoreUnavailable("used-token store unreachable") from e
        return True

    async def is_consumed(self, nonce: str) -> bool:
        try:
            async with self._sessions() as s:
                row = await s.execute(select(UsedToken.nonce).where(UsedToken.nonce == nonce))
                return row.first() is not None
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable("used-token store read failed") from e

    async def reap(self, now: int | None = None) -> int:
        now = self._clock() if now is None else now
        try:
            async with self._sessions() as s:
                res = await s.execute(delete(UsedToken).where(UsedToken.expires_at < now))
                await s.commit()
                return res.rowcount or 0
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable("used-token store reap failed") from e

    async def size(self) -> int:
        try:
            async with self._sessions() as s:
                return (await s.execute(select(func.count()).select_from(UsedToken))).scalar_one()
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable("used-token store read failed") from e
