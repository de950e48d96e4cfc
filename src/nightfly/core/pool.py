"""
Connection Pool - idle Transport'ы по ConnectionKey.

Карта key -> deque[(transport, released_at)] защищена asyncio.Lock.
Eviction ленивая: просроченные и мёртвые соединения выбрасываются при
acquire/release. Transport никогда не выдаётся дважды до release.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Set, Tuple

from .config import ConnectionPoolConfig
from .transport import ConnectionKey, Transport

logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    Пул keep-alive соединений.

    Args:
        config: Лимиты пула
        clock: Источник монотонного времени (для тестов)

    Example:
        >>> pool = ConnectionPool(ConnectionPoolConfig(max_idle_per_key=5))
        >>> transport = await pool.acquire(key)  # None - открыть новое
        >>> ...
        >>> await pool.release(key, transport)
    """

    def __init__(
        self,
        config: Optional[ConnectionPoolConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or ConnectionPoolConfig()
        self._clock = clock
        self._idle: Dict[ConnectionKey, Deque[Tuple[Transport, float]]] = {}
        self._in_use: Set[int] = set()
        self._lock = asyncio.Lock()
        self._closed = False

        self._hits = 0
        self._misses = 0
        self._evicted = 0

    async def acquire(self, key: ConnectionKey) -> Optional[Transport]:
        """
        Взять idle соединение для key.

        Returns:
            Живой Transport или None (вызывающий открывает новое)
        """
        async with self._lock:
            idle = self._idle.get(key)
            now = self._clock()
            while idle:
                transport, released_at = idle.pop()
                if now - released_at >= self.config.idle_timeout:
                    self._evict(transport, "idle timeout")
                    continue
                if not transport.is_alive():
                    self._evict(transport, "dead")
                    continue
                self._in_use.add(id(transport))
                self._hits += 1
                logger.debug("Reusing %r", transport)
                return transport

            if idle is not None:
                del self._idle[key]
            self._misses += 1
            return None

    def register(self, transport: Transport) -> None:
        """Отметить свежесозданный Transport как выданный."""
        self._in_use.add(id(transport))

    async def release(self, key: ConnectionKey, transport: Transport) -> None:
        """
        Вернуть Transport после полного чтения ответа.

        Не-reusable или лишние (сверх max_idle_per_key) соединения закрываются.
        """
        async with self._lock:
            self._in_use.discard(id(transport))

            if self._closed or not transport.reusable:
                transport.close()
                return

            if self.config.max_idle_per_key == 0:
                transport.close()
                return

            idle = self._idle.setdefault(key, deque())
            if any(existing is transport for existing, _ in idle):
                return
            now = self._clock()

            # Ленивая eviction просроченных
            while idle and now - idle[0][1] >= self.config.idle_timeout:
                stale, _ = idle.popleft()
                self._evict(stale, "idle timeout")

            idle.append((transport, now))
            while len(idle) > self.config.max_idle_per_key:
                oldest, _ = idle.popleft()
                self._evict(oldest, "pool full")

    async def discard(self, transport: Transport) -> None:
        """Закрыть Transport, не возвращая в пул."""
        async with self._lock:
            self._in_use.discard(id(transport))
        transport.close()

    async def close(self) -> None:
        """Закрыть все idle соединения."""
        async with self._lock:
            self._closed = True
            for idle in self._idle.values():
                for transport, _ in idle:
                    transport.close()
            self._idle.clear()

    def stats(self) -> Dict[str, Any]:
        """
        Статистика пула.

        Example:
            >>> pool.stats()
            {'idle': 2, 'in_use': 1, 'keys': 1, 'hits': 10, 'misses': 3, 'evicted': 0}
        """
        return {
            "idle": sum(len(idle) for idle in self._idle.values()),
            "in_use": len(self._in_use),
            "keys": len(self._idle),
            "hits": self._hits,
            "misses": self._misses,
            "evicted": self._evicted,
        }

    def _evict(self, transport: Transport, reason: str) -> None:
        self._evicted += 1
        logger.debug("Evicting %r (%s)", transport, reason)
        transport.close()
