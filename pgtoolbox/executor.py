"""Run bound tool statements directly or inside a settings-scoped transaction."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, time
from types import MappingProxyType
from typing import Any, AsyncIterator, Iterable, Mapping, Sequence

import asyncpg

from .binder import bind_parameters
from .coercion import coerce_arguments
from .errors import DatabaseError
from .hooks import HookContext, HookRegistry, SessionSettings, with_role_alias
from .models import BoundQuery, SourceDefinition, ToolDefinition, ToolResult
from .pools import PoolManager

LOG = logging.getLogger(__name__)

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

# Transaction-local settings, applied in one round trip.
SET_CONFIG_SQL = "SELECT set_config(el->>0, el->>1, true) FROM json_array_elements($1::json) el"


class ConnectionQueue:
    """Serializes operations issued on the same physical connection."""

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._holders: dict[int, int] = {}

    @asynccontextmanager
    async def exclusive(self, connection: object) -> AsyncIterator[None]:
        """Wait for any pending operation on ``connection`` before yielding."""

        key = id(connection)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    def pending(self, connection: object) -> bool:
        return id(connection) in self._locks


class QueryExecutor:
    """Executes tool invocations against pooled connections.

    ``execute`` never raises: every failure becomes an error ``ToolResult``.
    ``run`` is the raising variant used by ``execute`` and by callers that
    want rows rather than serialized text.
    """

    def __init__(
        self,
        pools: PoolManager,
        hooks: HookRegistry | None = None,
        *,
        queue: ConnectionQueue | None = None,
    ) -> None:
        self._pools = pools
        self._hooks = hooks if hooks is not None else HookRegistry()
        self._queue = queue if queue is not None else ConnectionQueue()

    @property
    def hooks(self) -> HookRegistry:
        return self._hooks

    async def execute(
        self,
        tool: ToolDefinition,
        source: SourceDefinition,
        arguments: Mapping[str, Any] | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> ToolResult:
        try:
            rows = await self.run(tool, source, arguments, extra)
        except Exception as exc:
            LOG.debug("Tool invocation failed", extra={"tool": tool.name, "error": str(exc)})
            return ToolResult.failure(tool.name, str(exc))
        return ToolResult.from_text(serialize_rows(rows))

    async def run(
        self,
        tool: ToolDefinition,
        source: SourceDefinition,
        arguments: Mapping[str, Any] | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        coerced = coerce_arguments(tool.parameters, arguments)
        bound = bind_parameters(tool.statement, coerced, order=[spec.name for spec in tool.parameters])
        pool = await self._pools.get_pool(source.name, source.dsn())
        ctx = HookContext(
            tool_name=tool.name,
            tool=tool,
            pool=pool,
            arguments=MappingProxyType(coerced),
            extra=MappingProxyType(dict(extra or {})),
            query=bound.text,
        )
        settings = await self._hooks.run_before_query(ctx)
        if settings:
            LOG.debug("Running tool in transaction", extra={"tool": tool.name, "source": source.name})
            records = await self._run_in_transaction(pool, bound, with_role_alias(settings), tool.name)
        else:
            LOG.debug("Running tool on pool", extra={"tool": tool.name, "source": source.name})
            records = await self._run_direct(pool, bound)
        return [dict(record) for record in records]

    async def _run_direct(self, pool: Any, bound: BoundQuery) -> Sequence[Any]:
        try:
            async with pool.acquire(timeout=self._pools.settings.connect_timeout) as connection:
                return await connection.fetch(bound.text, *bound.values)
        except _DRIVER_ERRORS as exc:
            raise DatabaseError(str(exc)) from exc

    async def _run_in_transaction(
        self,
        pool: Any,
        bound: BoundQuery,
        settings: SessionSettings,
        tool_name: str,
    ) -> Sequence[Any]:
        try:
            connection = await pool.acquire(timeout=self._pools.settings.connect_timeout)
        except _DRIVER_ERRORS as exc:
            raise DatabaseError(str(exc)) from exc
        try:
            async with self._queue.exclusive(connection):
                try:
                    await connection.execute("BEGIN")
                    payload = json.dumps([[key, value] for key, value in settings.items()])
                    await connection.execute(SET_CONFIG_SQL, payload)
                    records = await connection.fetch(bound.text, *bound.values)
                    await connection.execute("COMMIT")
                except Exception:
                    await self._rollback(connection, tool_name)
                    raise
            return records
        except _DRIVER_ERRORS as exc:
            raise DatabaseError(str(exc)) from exc
        finally:
            await self._release(pool, connection, tool_name)

    async def _rollback(self, connection: Any, tool_name: str) -> None:
        try:
            await connection.execute("ROLLBACK")
        except Exception as exc:
            LOG.warning("Rollback failed", extra={"tool": tool_name, "error": str(exc)})

    async def _release(self, pool: Any, connection: Any, tool_name: str) -> None:
        try:
            await pool.release(connection)
        except Exception as exc:
            LOG.warning("Failed to release connection", extra={"tool": tool_name, "error": str(exc)})


def serialize_rows(rows: Iterable[Mapping[str, Any]]) -> str:
    """Pretty-print rows as JSON; an empty result is ``[]``."""

    return json.dumps([dict(row) for row in rows], indent=2, default=_json_default, ensure_ascii=False)


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


__all__ = [
    "ConnectionQueue",
    "QueryExecutor",
    "SET_CONFIG_SQL",
    "serialize_rows",
]
