"""Tests for the transactional query executor."""

from __future__ import annotations

import asyncio
import json
from datetime import date, datetime
from decimal import Decimal

import pytest

from fakes import FakeConnection, FakePool, PoolFactory
from pgtoolbox.errors import DatabaseError
from pgtoolbox.executor import SET_CONFIG_SQL, ConnectionQueue, QueryExecutor, serialize_rows
from pgtoolbox.hooks import HookProvider, HookRegistry
from pgtoolbox.models import ParameterSpec, ParameterType, SourceDefinition, ToolDefinition
from pgtoolbox.pools import PoolManager, PoolSettings

SOURCE = SourceDefinition(name="main", connection_string="postgresql://localhost/app")

USERS_TOOL = ToolDefinition(
    name="find_user",
    source="main",
    description="Find a user",
    statement="SELECT * FROM users WHERE id = :user_id OR parent_id = :user_id",
    parameters=(ParameterSpec(name="user_id", type=ParameterType.NUMBER, description="id"),),
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _executor(pool: FakePool, hooks: HookRegistry | None = None) -> QueryExecutor:
    return QueryExecutor(PoolManager(pool_factory=PoolFactory(pool)), hooks)


def _settings_hook(settings: dict[str, str]) -> HookRegistry:
    registry = HookRegistry()
    registry.register(HookProvider(name="auth", before_query=lambda ctx: settings))
    return registry


@pytest.mark.anyio
async def test_direct_path_runs_query_without_transaction() -> None:
    pool = FakePool(rows=[{"id": 123, "email": "a@example.com"}])
    executor = _executor(pool)

    result = await executor.execute(USERS_TOOL, SOURCE, {"user_id": "123"})

    assert result.is_error is False
    assert pool.connection.statements == ["SELECT * FROM users WHERE id = $1 OR parent_id = $1"]
    assert pool.connection.arguments == [(123,)]
    assert pool.acquire_timeouts == [2.0]
    assert pool.released == [pool.connection]
    assert json.loads(result.text) == [{"id": 123, "email": "a@example.com"}]
    assert result.text == json.dumps([{"id": 123, "email": "a@example.com"}], indent=2)


@pytest.mark.anyio
async def test_empty_result_serializes_to_empty_list() -> None:
    result = await _executor(FakePool(rows=[])).execute(USERS_TOOL, SOURCE, {"user_id": 1})

    assert result.text == "[]"
    assert result.to_dict() == {"content": [{"type": "text", "text": "[]"}]}


@pytest.mark.anyio
async def test_transactional_path_applies_settings_and_commits() -> None:
    pool = FakePool(rows=[{"id": 1}])
    executor = _executor(pool, _settings_hook({"jwt.claims.role": "admin"}))

    result = await executor.execute(USERS_TOOL, SOURCE, {"user_id": 1})

    connection = pool.connection
    assert result.is_error is False
    assert connection.statements == [
        "BEGIN",
        SET_CONFIG_SQL,
        "SELECT * FROM users WHERE id = $1 OR parent_id = $1",
        "COMMIT",
    ]
    assert json.loads(connection.arguments[1][0]) == [["jwt.claims.role", "admin"], ["role", "admin"]]
    assert connection.arguments[2] == (1,)
    assert pool.released == [connection]
    assert pool.acquire_timeouts == [2.0]


@pytest.mark.anyio
async def test_explicit_role_is_not_overwritten() -> None:
    pool = FakePool()
    executor = _executor(pool, _settings_hook({"role": "authenticated", "jwt.claims.role": "admin"}))

    await executor.execute(USERS_TOOL, SOURCE, {"user_id": 1})

    applied = dict(json.loads(pool.connection.arguments[1][0]))
    assert applied == {"role": "authenticated", "jwt.claims.role": "admin"}


@pytest.mark.anyio
async def test_query_failure_rolls_back_and_releases_once() -> None:
    connection = FakeConnection(failures={"SELECT * FROM users": RuntimeError("relation does not exist")})
    pool = FakePool(connection=connection)
    executor = _executor(pool, _settings_hook({"app.tenant": "42"}))

    result = await executor.execute(USERS_TOOL, SOURCE, {"user_id": 1})

    assert result.is_error is True
    assert result.text == "Error executing tool 'find_user': relation does not exist"
    assert connection.statements[-1] == "ROLLBACK"
    assert "COMMIT" not in connection.statements
    assert pool.released == [connection]


@pytest.mark.anyio
async def test_settings_failure_skips_main_query() -> None:
    connection = FakeConnection(failures={SET_CONFIG_SQL: OSError("connection reset")})
    pool = FakePool(connection=connection)
    executor = _executor(pool, _settings_hook({"app.tenant": "42"}))

    result = await executor.execute(USERS_TOOL, SOURCE, {"user_id": 1})

    assert result.text == "Error executing tool 'find_user': connection reset"
    assert connection.statements == ["BEGIN", SET_CONFIG_SQL, "ROLLBACK"]
    assert pool.released == [connection]


@pytest.mark.anyio
async def test_rollback_failure_does_not_mask_original_error() -> None:
    connection = FakeConnection(
        failures={
            SET_CONFIG_SQL: RuntimeError("invalid setting"),
            "ROLLBACK": RuntimeError("connection lost"),
        }
    )
    pool = FakePool(connection=connection)
    executor = _executor(pool, _settings_hook({"app.tenant": "42"}))

    result = await executor.execute(USERS_TOOL, SOURCE, {"user_id": 1})

    assert result.text == "Error executing tool 'find_user': invalid setting"
    assert pool.released == [connection]


@pytest.mark.anyio
async def test_acquire_timeout_is_a_structured_error() -> None:
    pool = FakePool()
    pool.acquire_error = asyncio.TimeoutError("pool exhausted")
    executor = _executor(pool, _settings_hook({"app.tenant": "42"}))

    result = await executor.execute(USERS_TOOL, SOURCE, {"user_id": 1})

    assert result.is_error is True
    assert result.text.startswith("Error executing tool 'find_user':")
    assert pool.released == []


@pytest.mark.anyio
async def test_direct_path_acquire_timeout_is_a_database_error() -> None:
    pool = FakePool()
    pool.acquire_error = asyncio.TimeoutError("pool exhausted")
    executor = _executor(pool)

    result = await executor.execute(USERS_TOOL, SOURCE, {"user_id": 1})

    assert result.text == "Error executing tool 'find_user': pool exhausted"
    assert pool.acquire_timeouts == [2.0]
    assert pool.connection.statements == []
    assert pool.released == []

    with pytest.raises(DatabaseError):
        await executor.run(USERS_TOOL, SOURCE, {"user_id": 1})


@pytest.mark.anyio
async def test_direct_path_honours_configured_connect_timeout() -> None:
    pool = FakePool()
    manager = PoolManager(PoolSettings(connect_timeout=0.5), pool_factory=PoolFactory(pool))

    await QueryExecutor(manager).execute(USERS_TOOL, SOURCE, {"user_id": 1})

    assert pool.acquire_timeouts == [0.5]


@pytest.mark.anyio
async def test_empty_injected_registry_is_kept() -> None:
    registry = HookRegistry()
    pool = FakePool()
    executor = QueryExecutor(PoolManager(pool_factory=PoolFactory(pool)), registry, queue=ConnectionQueue())

    assert executor.hooks is registry
    registry.register(HookProvider(name="late", before_query=lambda _: {"app.tenant": "1"}))

    await executor.execute(USERS_TOOL, SOURCE, {"user_id": 1})

    assert pool.connection.statements[0] == "BEGIN"


@pytest.mark.anyio
async def test_hook_failure_aborts_before_any_query() -> None:
    def _broken(_ctx):  # type: ignore[no-untyped-def]
        raise ValueError("token expired")

    registry = HookRegistry()
    registry.register(HookProvider(name="auth", before_query=_broken))
    pool = FakePool()

    result = await _executor(pool, registry).execute(USERS_TOOL, SOURCE, {"user_id": 1})

    assert result.text == "Error executing tool 'find_user': token expired"
    assert result.is_error is True
    assert pool.connection.statements == []
    assert pool.acquire_timeouts == []


@pytest.mark.anyio
async def test_missing_argument_is_reported_as_tool_error() -> None:
    pool = FakePool()

    result = await _executor(pool).execute(USERS_TOOL, SOURCE, {})

    assert result.to_dict() == {
        "content": [{"type": "text", "text": "Error executing tool 'find_user': Missing required argument 'user_id'"}],
        "isError": True,
    }
    assert pool.connection.statements == []


@pytest.mark.anyio
async def test_hooks_receive_bound_query_and_request_metadata() -> None:
    seen = []

    def _capture(ctx):  # type: ignore[no-untyped-def]
        seen.append(ctx)
        return None

    registry = HookRegistry()
    registry.register_hook(_capture)
    pool = FakePool()

    await _executor(pool, registry).execute(USERS_TOOL, SOURCE, {"user_id": "9"}, {"session": "abc"})

    ctx = seen[0]
    assert ctx.tool_name == "find_user"
    assert ctx.tool is USERS_TOOL
    assert ctx.pool is pool
    assert dict(ctx.arguments) == {"user_id": 9}
    assert dict(ctx.extra) == {"session": "abc"}
    assert ctx.query == "SELECT * FROM users WHERE id = $1 OR parent_id = $1"
    assert pool.connection.statements == [ctx.query]


@pytest.mark.anyio
async def test_hostile_argument_travels_out_of_band() -> None:
    tool = ToolDefinition(
        name="by_name",
        source="main",
        statement="SELECT * FROM users WHERE name = :name",
        parameters=(ParameterSpec(name="name", type=ParameterType.STRING),),
    )
    pool = FakePool()
    hostile = "x'; DROP TABLE users; --"

    await _executor(pool).execute(tool, SOURCE, {"name": hostile})

    assert pool.connection.fetch_calls == [("SELECT * FROM users WHERE name = $1", (hostile,))]


@pytest.mark.anyio
async def test_connection_queue_serializes_operations_on_one_connection() -> None:
    queue = ConnectionQueue()
    connection = object()
    order: list[str] = []
    release_first = asyncio.Event()

    async def _first() -> None:
        async with queue.exclusive(connection):
            order.append("first:start")
            await release_first.wait()
            order.append("first:end")

    async def _second() -> None:
        async with queue.exclusive(connection):
            order.append("second")

    first = asyncio.create_task(_first())
    await asyncio.sleep(0)
    second = asyncio.create_task(_second())
    await asyncio.sleep(0)
    assert order == ["first:start"]
    assert queue.pending(connection)

    release_first.set()
    await asyncio.gather(first, second)

    assert order == ["first:start", "first:end", "second"]
    assert not queue.pending(connection)


def test_serialize_rows_handles_driver_types() -> None:
    text = serialize_rows(
        [{"amount": Decimal("1.50"), "day": date(2024, 1, 2), "at": datetime(2024, 1, 2, 3, 4, 5), "raw": b"\x01"}]
    )

    assert json.loads(text) == [{"amount": "1.50", "day": "2024-01-02", "at": "2024-01-02T03:04:05", "raw": "01"}]
