"""Тесты Connection Pool."""

import pytest

from nightfly.core.config import ConnectionPoolConfig
from nightfly.core.pool import ConnectionPool
from nightfly.core.transport import ConnectionKey

KEY = ConnectionKey("http", "a.test", 80)
OTHER_KEY = ConnectionKey("http", "a.test", 8080)


class FakeTransport:
    """Transport без сокета."""

    def __init__(self, alive=True, reusable=True):
        self.alive = alive
        self.reusable = reusable
        self.closed = False

    def is_alive(self):
        return self.alive and not self.closed

    def close(self):
        self.closed = True
        self.reusable = False


class FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pool(clock):
    return ConnectionPool(ConnectionPoolConfig(max_idle_per_key=2, idle_timeout=30), clock=clock)


@pytest.mark.asyncio
async def test_empty_pool_misses(pool):
    assert await pool.acquire(KEY) is None
    assert pool.stats()["misses"] == 1


@pytest.mark.asyncio
async def test_release_then_acquire_same_transport(pool):
    transport = FakeTransport()
    pool.register(transport)
    assert pool.stats()["in_use"] == 1

    await pool.release(KEY, transport)
    assert pool.stats()["idle"] == 1
    assert pool.stats()["in_use"] == 0

    assert await pool.acquire(KEY) is transport
    assert pool.stats()["hits"] == 1


@pytest.mark.asyncio
async def test_keys_are_isolated(pool):
    await pool.release(KEY, FakeTransport())
    assert await pool.acquire(OTHER_KEY) is None


@pytest.mark.asyncio
async def test_not_handed_out_twice(pool):
    await pool.release(KEY, FakeTransport())
    assert await pool.acquire(KEY) is not None
    assert await pool.acquire(KEY) is None


@pytest.mark.asyncio
async def test_most_recent_first(pool):
    first, second = FakeTransport(), FakeTransport()
    await pool.release(KEY, first)
    await pool.release(KEY, second)
    assert await pool.acquire(KEY) is second


@pytest.mark.asyncio
async def test_idle_timeout_evicts(pool, clock):
    transport = FakeTransport()
    await pool.release(KEY, transport)
    clock.now += 31
    assert await pool.acquire(KEY) is None
    assert transport.closed is True
    assert pool.stats()["evicted"] == 1


@pytest.mark.asyncio
async def test_dead_connection_evicted(pool):
    dead, alive = FakeTransport(), FakeTransport()
    await pool.release(KEY, alive)
    await pool.release(KEY, dead)
    dead.alive = False
    assert await pool.acquire(KEY) is alive
    assert dead.closed is True


@pytest.mark.asyncio
async def test_max_idle_per_key(pool):
    transports = [FakeTransport() for _ in range(3)]
    for transport in transports:
        await pool.release(KEY, transport)
    assert pool.stats()["idle"] == 2
    # Самое старое закрыто
    assert transports[0].closed is True


@pytest.mark.asyncio
async def test_unreusable_closed_on_release(pool):
    transport = FakeTransport(reusable=False)
    await pool.release(KEY, transport)
    assert transport.closed is True
    assert pool.stats()["idle"] == 0


@pytest.mark.asyncio
async def test_zero_idle_disables_pooling(clock):
    pool = ConnectionPool(ConnectionPoolConfig(max_idle_per_key=0), clock=clock)
    transport = FakeTransport()
    await pool.release(KEY, transport)
    assert transport.closed is True


@pytest.mark.asyncio
async def test_double_release_ignored(pool):
    transport = FakeTransport()
    await pool.release(KEY, transport)
    await pool.release(KEY, transport)
    assert pool.stats()["idle"] == 1


@pytest.mark.asyncio
async def test_discard(pool):
    transport = FakeTransport()
    pool.register(transport)
    await pool.discard(transport)
    assert transport.closed is True
    assert pool.stats()["in_use"] == 0


@pytest.mark.asyncio
async def test_close_closes_idle_and_later_releases(pool):
    idle, busy = FakeTransport(), FakeTransport()
    await pool.release(KEY, idle)
    await pool.close()
    assert idle.closed is True

    await pool.release(KEY, busy)
    assert busy.closed is True
    assert pool.stats()["idle"] == 0
