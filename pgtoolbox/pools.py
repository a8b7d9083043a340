"""Lazily created asyncpg pools, one per configured source."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import asyncpg

from .errors import DatabaseError

LOG = logging.getLogger(__name__)

DEFAULT_MAX_CONNECTIONS = 10
DEFAULT_IDLE_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 2.0

PoolFactory = Callable[..., Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class PoolSettings:
    """Limits applied to every pool the manager creates."""

    max_connections: int = DEFAULT_MAX_CONNECTIONS
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT

    def pool_kwargs(self) -> dict[str, object]:
        return {
            "min_size": 0,
            "max_size": self.max_connections,
            "max_inactive_connection_lifetime": self.idle_timeout,
            "timeout": self.connect_timeout,
        }


class PoolManager:
    """Owns every connection pool; keyed by source name.

    A source's connection string is only read when its pool is first
    created, so credential changes need a restart.
    """

    def __init__(self, settings: PoolSettings | None = None, *, pool_factory: PoolFactory | None = None) -> None:
        self._settings = settings if settings is not None else PoolSettings()
        self._pool_factory = pool_factory if pool_factory is not None else asyncpg.create_pool
        self._pools: dict[str, Any] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def settings(self) -> PoolSettings:
        return self._settings

    def __contains__(self, source_name: object) -> bool:
        return source_name in self._pools

    def __len__(self) -> int:
        return len(self._pools)

    async def get_pool(self, source_name: str, connection_string: str) -> Any:
        """Return the cached pool for ``source_name``, creating it once."""

        pool = self._pools.get(source_name)
        if pool is not None:
            return pool
        lock = self._locks.setdefault(source_name, asyncio.Lock())
        async with lock:
            pool = self._pools.get(source_name)
            if pool is None:
                pool = await self._create_pool(source_name, connection_string)
                self._pools[source_name] = pool
        return pool

    async def close_all(self) -> None:
        """Close every pool concurrently and forget them."""

        pools = list(self._pools.items())
        self._pools.clear()
        self._locks.clear()
        if not pools:
            return
        results = await asyncio.gather(*(pool.close() for _, pool in pools), return_exceptions=True)
        for (name, _), result in zip(pools, results):
            if isinstance(result, Exception):
                LOG.warning("Failed to close pool", extra={"source": name, "error": str(result)})

    async def _create_pool(self, source_name: str, connection_string: str) -> Any:
        LOG.debug("Creating connection pool", extra={"source": source_name})
        try:
            return await self._pool_factory(dsn=connection_string, **self._settings.pool_kwargs())
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
            raise DatabaseError(f"Failed to create pool for source '{source_name}': {exc}") from exc


__all__ = [
    "DEFAULT_CONNECT_TIMEOUT",
    "DEFAULT_IDLE_TIMEOUT",
    "DEFAULT_MAX_CONNECTIONS",
    "PoolManager",
    "PoolSettings",
]
