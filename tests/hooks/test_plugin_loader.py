"""Tests for entry-point plugin discovery."""

from __future__ import annotations

import importlib.metadata as metadata

import pytest

from examples.plugins.jwt_claims import JwtClaimsPlugin
from pgtoolbox.errors import HookExecutionError
from pgtoolbox.hooks import HookContext, HookProvider, HookRegistry, PluginContext, PluginError, PluginLoader
from pgtoolbox.hooks.loader import version_key
from pgtoolbox.models import ToolDefinition

ENTRY_POINT = metadata.EntryPoint(
    name="jwt-claims",
    value="examples.plugins.jwt_claims:JwtClaimsPlugin",
    group="pgtoolbox.plugins",
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def fake_entry_points(monkeypatch: pytest.MonkeyPatch) -> None:
    """Force discovery to use the sample plugin."""

    def _entry_points() -> metadata.EntryPoints:
        return metadata.EntryPoints((ENTRY_POINT,))

    monkeypatch.setattr(metadata, "entry_points", _entry_points)


def _context(extra: dict[str, object]) -> HookContext:
    tool = ToolDefinition(name="t", source="main", statement="SELECT 1")
    return HookContext(tool_name="t", tool=tool, pool=None, arguments={}, extra=extra, query="SELECT 1")


def test_candidates_instantiate_entry_point_descriptors() -> None:
    loader = PluginLoader(PluginContext())

    candidates = loader.candidates()

    assert len(candidates) == 1
    assert isinstance(candidates[0], JwtClaimsPlugin)


@pytest.mark.anyio
async def test_load_registers_hooks_and_context() -> None:
    ctx = PluginContext(toolbox="toolbox")
    loader = PluginLoader(ctx)
    registry = HookRegistry()

    loaded = loader.load(registry)

    assert [plugin.name for plugin in loaded] == ["jwt-claims"]
    plugin = loaded[0]
    assert plugin.hook_count == 1
    assert isinstance(plugin.descriptor, JwtClaimsPlugin)
    assert plugin.descriptor.last_context == ctx
    settings = await registry.run_before_query(_context({"auth": {"role": "admin"}}))
    assert settings == {"jwt.claims.role": "admin"}


@pytest.mark.anyio
async def test_hook_failures_name_the_owning_plugin(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(_ctx: HookContext) -> None:
        raise RuntimeError("no claims")

    def _register(self, ctx):  # type: ignore[no-untyped-def]
        return [HookProvider(name="claims-provider", before_query=_fail)]

    monkeypatch.setattr(JwtClaimsPlugin, "register", _register)
    registry = HookRegistry()
    PluginLoader(PluginContext()).load(registry)

    with pytest.raises(HookExecutionError) as excinfo:
        await registry.run_before_query(_context({}))

    assert excinfo.value.plugin == "jwt-claims"
    assert registry.get("claims-provider") is not None


def test_non_provider_registration_result_raises_plugin_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(JwtClaimsPlugin, "register", lambda self, ctx: [lambda _ctx: {"role": "x"}])
    registry = HookRegistry()

    with pytest.raises(PluginError, match="expected HookProvider"):
        PluginLoader(PluginContext()).load(registry)

    assert len(registry) == 0


def test_provider_name_clash_raises_plugin_error() -> None:
    registry = HookRegistry()
    registry.register(HookProvider(name="jwt-claims", before_query=lambda _: None))

    with pytest.raises(PluginError, match="already registered"):
        PluginLoader(PluginContext()).load(registry)


def test_load_twice_registers_once() -> None:
    registry = HookRegistry()
    loader = PluginLoader(PluginContext())

    loader.load(registry)
    assert loader.load(registry) == []
    assert len(registry) == 1


def test_plugin_outside_allowlist_is_skipped() -> None:
    registry = HookRegistry()
    loader = PluginLoader(PluginContext(), enabled_plugins={"other"})

    loaded = loader.load(registry)

    assert loaded == []
    assert len(registry) == 0


def test_disabled_plugin_is_skipped() -> None:
    loader = PluginLoader(PluginContext(), disabled_plugins={"jwt-claims"})

    assert loader.load(HookRegistry()) == []


def test_incompatible_plugin_is_skipped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(JwtClaimsPlugin, "min_core", "9.9.9")
    loader = PluginLoader(PluginContext(), core_version="0.1.0")

    loaded = loader.load(HookRegistry())

    assert loaded == []


def test_registration_failure_raises_plugin_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def _broken(self, ctx):  # type: ignore[no-untyped-def]
        raise RuntimeError("boom")

    monkeypatch.setattr(JwtClaimsPlugin, "register", _broken)
    loader = PluginLoader(PluginContext())

    with pytest.raises(PluginError):
        loader.load(HookRegistry())


@pytest.mark.anyio
async def test_shutdown_invokes_plugin_hook() -> None:
    loader = PluginLoader(PluginContext())
    loaded = loader.load(HookRegistry())
    descriptor = loaded[0].descriptor

    assert not descriptor.shutdown_called
    await loader.shutdown()
    assert descriptor.shutdown_called


def test_builtin_plugin_is_loaded_without_entry_points(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(metadata, "entry_points", lambda: metadata.EntryPoints(()))
    builtin = JwtClaimsPlugin()
    loader = PluginLoader(PluginContext(), builtin_plugins=[builtin])

    loaded = loader.load(HookRegistry())

    assert [plugin.descriptor for plugin in loaded] == [builtin]


def test_installed_plugin_shadows_builtin_of_same_name() -> None:
    builtin = JwtClaimsPlugin()
    loader = PluginLoader(PluginContext(), builtin_plugins=[builtin])

    candidates = loader.candidates()

    assert len(candidates) == 1
    assert candidates[0] is not builtin


@pytest.mark.parametrize(
    ("value", "expected"),
    [("0.1.0", (0, 1, 0)), ("1.2", (1, 2, 0)), ("2.0.0rc1", (2, 0, 0)), ("dev", (0, 0, 0))],
)
def test_version_key(value: str, expected: tuple[int, int, int]) -> None:
    assert version_key(value) == expected
