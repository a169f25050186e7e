# tests/test_store.py
import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.exc import OperationalError

from qrcheckin.core.errors import StoreUnavailable
from qrcheckin.core.store import InMemoryUsedTokenStore, SqlUsedTokenStore
from qrcheckin.db.session import create_tables, make_engine, make_sessionmaker

from conftest import T0, FakeClock


def test_first_consume_wins(store):
    assert store.try_consume_sync("n1", T0 + 1000) is True
    assert store.try_consume_sync("n1", T0 + 1000) is False
    assert store.try_consume_sync("n2", T0 + 1000) is True
    assert len(store) == 2
    assert "n1" in store


def test_async_interface_matches_sync(store):
    async def run():
        assert await store.try_consume("n", T0 + 1) is True
        assert await store.try_consume("n", T0 + 1) is False
        assert await store.size() == 1

    asyncio.run(run())


def test_threads_race_on_one_nonce():
    store = InMemoryUsedTokenStore(shards=4)
    barrier = threading.Barrier(32)

    def attempt(_):
        barrier.wait()
        return store.try_consume_sync("contended", 2**62)

    with ThreadPoolExecutor(max_workers=32) as pool:
        results = list(pool.map(attempt, range(32)))

    assert results.count(True) == 1
    assert results.count(False) == 31


def test_reap_removes_only_expired(store, clock):
    store.try_consume_sync("short", T0 + 1_000)
    store.try_consume_sync("long", T0 + 60_000)

    clock.advance(1_000)
    assert store.reap_sync() == 0  # expires_at == now is still live

    clock.advance(1)
    assert store.reap_sync() == 1
    assert "short" not in store
    assert "long" in store


def test_store_shrinks_back_to_outstanding_population():
    clock = FakeClock()
    store = InMemoryUsedTokenStore(shards=8, reap_every=0, clock=clock)

    for i in range(5_000):
        store.try_consume_sync(f"short-{i}", T0 + 1_000)
    for i in range(50):
        store.try_consume_sync(f"long-{i}", T0 + 600_000)
    assert len(store) == 5_050

    clock.advance(2_000)
    assert store.reap_sync() == 5_000
    assert len(store) == 50


def test_lazy_sweep_bounds_growth_without_reaper():
    clock = FakeClock()
    store = InMemoryUsedTokenStore(shards=1, reap_every=100, clock=clock)

    # waves of short-lived tokens, each wave expired before the next one
    for wave in range(20):
        for i in range(100):
            store.try_consume_sync(f"w{wave}-{i}", clock() + 500)
        clock.advance(1_000)

    # never more than about one wave resident
    assert len(store) <= 200


def test_shards_must_be_positive():
    with pytest.raises(ValueError):
        InMemoryUsedTokenStore(shards=0)


def test_reap_does_not_block_event_loop():
    clock = FakeClock()
    store = InMemoryUsedTokenStore(shards=4, reap_every=0, clock=clock)
    for i in range(50_000):
        store.try_consume_sync(f"n{i}", T0)

    async def run():
        ticks = 0
        done = False

        async def ticker():
            nonlocal ticks
            while not done:
                ticks += 1
                await asyncio.sleep(0)

        task = asyncio.create_task(ticker())
        removed = await store.reap(T0 + 1)
        seen = ticks
        done = True
        await task
        return removed, seen

    removed, ticks_during_reap = asyncio.run(run())
    assert removed == 50_000
    # a sweep run inline would finish before the ticker ever ran
    assert ticks_during_reap >= 1
    assert len(store) == 0


# --- SQL-backed store ---

def _sql_store(tmp_path, clock):
    engine = make_engine(f"sqlite+aiosqlite:///{(tmp_path / 'used.sqlite3').as_posix()}")
    return engine, SqlUsedTokenStore(make_sessionmaker(engine), clock=clock)


def test_sql_store_conditional_write_and_reap(tmp_path, clock):
    async def run():
        engine, store = _sql_store(tmp_path, clock)
        await create_tables(engine)
        try:
            assert await store.try_consume("n1", T0 + 1_000) is True
            assert await store.try_consume("n1", T0 + 1_000) is False
            assert await store.try_consume("n2", T0 + 60_000) is True
            assert await store.size() == 2

            assert await store.reap(T0 + 1_001) == 1
            assert await store.size() == 1
        finally:
            await engine.dispose()

    asyncio.run(run())


def test_sql_store_failure_is_unavailable_not_used(tmp_path, clock):
    async def run():
        engine, store = _sql_store(tmp_path, clock)
        # no tables created: every statement fails
        try:
            with pytest.raises(StoreUnavailable) as exc:
                await store.try_consume("n1", T0 + 1_000)
            assert isinstance(exc.value.__cause__, OperationalError)
            with pytest.raises(StoreUnavailable):
                await store.size()
        finally:
            await engine.dispose()

    asyncio.run(run())


def test_sql_store_concurrent_consumes_one_winner(tmp_path, clock):
    async def run():
        engine, store = _sql_store(tmp_path, clock)
        await create_tables(engine)
        try:
            results = await asyncio.gather(
                *(store.try_consume("contended", T0 + 60_000) for _ in range(20)),
                return_exceptions=True,
            )
            return results, await store.size()
        finally:
            await engine.dispose()

    results, size = asyncio.run(run())
    assert results.count(True) == 1
    # losers see the PK conflict; a lock timeout surfaces as unavailable, never as a win
    assert all(r is False or isinstance(r, StoreUnavailable) for r in results if r is not True)
    assert size == 1


def test_sql_store_is_consumed_is_read_only(tmp_path, clock):
    async def run():
        engine, store = _sql_store(tmp_path, clock)
        await create_tables(engine)
        try:
            assert await store.is_consumed("n1") is False
            assert await store.size() == 0
            assert await store.try_consume("n1", T0 + 1_000) is True
            assert await store.is_consumed("n1") is True
            assert await store.size() == 1
        finally:
            await engine.dispose()

    asyncio.run(run())


def test_memory_store_is_consumed_is_read_only(store):
    async def run():
        assert await store.is_consumed("n1") is False
        assert await store.size() == 0
        await store.try_consume("n1", T0 + 1_000)
        assert await store.is_consumed("n1") is True

    asyncio.run(run())


def test_sql_store_os_errors_are_unavailable(clock):
    def unreachable():
        raise ConnectionRefusedError("db host refused connection")

    store = SqlUsedTokenStore(unreachable, clock=clock)

    async def run():
        with pytest.raises(StoreUnavailable):
            await store.try_consume("n1", T0 + 1_000)
        with pytest.raises(StoreUnavailable):
            await store.is_consumed("n1")
        with pytest.raises(StoreUnavailable):
            await store.reap()
        with pytest.raises(StoreUnavailable):
            await store.size()

    asyncio.run(run())
