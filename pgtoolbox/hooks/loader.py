"""Entry-point discovery for hook plugins."""

from __future__ import annotations

import importlib.metadata as metadata
import inspect
import logging
import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from pgtoolbox import __version__ as CORE_VERSION

from .registry import HookRegistry
from .types import (
    HookProvider,
    PluginCompatibilityError,
    PluginContext,
    PluginDescriptor,
    PluginError,
)

LOG = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "pgtoolbox.plugins"

_RELEASE = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")


def version_key(value: str) -> tuple[int, int, int]:
    """Leading ``major.minor.patch`` of ``value``; missing parts count as zero."""

    match = _RELEASE.match(value.strip())
    if match is None:
        return (0, 0, 0)
    major, minor, patch = (int(part or 0) for part in match.groups())
    return (major, minor, patch)


@dataclass(slots=True, frozen=True)
class LoadedPlugin:
    """A plugin whose hook providers are live in a registry."""

    name: str
    version: str
    descriptor: PluginDescriptor
    providers: tuple[HookProvider, ...] = ()

    @property
    def hook_count(self) -> int:
        return sum(len(provider.hooks()) for provider in self.providers)


class PluginLoader:
    """Registers the before-query hooks of installed plugins.

    Candidates come from the ``pgtoolbox.plugins`` entry-point group, followed
    by ``builtin_plugins`` whose names no installed plugin already claims.
    """

    def __init__(
        self,
        ctx: PluginContext,
        *,
        core_version: str = CORE_VERSION,
        entry_point_group: str = ENTRY_POINT_GROUP,
        enabled_plugins: Iterable[str] | None = None,
        disabled_plugins: Iterable[str] | None = None,
        builtin_plugins: Iterable[PluginDescriptor | type[PluginDescriptor]] | None = None,
    ) -> None:
        self._ctx = ctx
        self._core = version_key(core_version)
        self._core_version = core_version
        self._entry_point_group = entry_point_group
        self._enabled: set[str] | None = set(enabled_plugins) if enabled_plugins is not None else None
        self._disabled: set[str] = set(disabled_plugins or ())
        self._builtin_plugins = list(builtin_plugins or ())
        self._loaded: dict[str, LoadedPlugin] = {}

    def candidates(self) -> list[PluginDescriptor]:
        """Instantiated descriptors in load order, one per plugin name."""

        by_name: dict[str, PluginDescriptor] = {}
        entry_points = metadata.entry_points().select(group=self._entry_point_group)
        for entry_point in sorted(entry_points, key=lambda ep: ep.name):
            descriptor = _instantiate(entry_point.load())
            by_name[descriptor.name] = descriptor
        for builtin in self._builtin_plugins:
            descriptor = _instantiate(builtin)
            by_name.setdefault(descriptor.name, descriptor)
        return list(by_name.values())

    def load(self, registry: HookRegistry) -> list[LoadedPlugin]:
        """Register the providers of every enabled, compatible plugin.

        Plugins already loaded by this loader are not registered again.
        """

        loaded: list[LoadedPlugin] = []
        for descriptor in self.candidates():
            name = descriptor.name
            if name in self._loaded:
                continue
            if not self._is_enabled(name):
                LOG.debug("Skipping disabled plugin", extra={"plugin": name})
                continue
            try:
                self._check_min_core(descriptor)
            except PluginCompatibilityError as exc:
                LOG.warning(str(exc), extra={"plugin": name})
                continue
            providers = self._collect_providers(descriptor)
            try:
                for provider in providers:
                    registry.register(provider, plugin=name)
            except ValueError as exc:
                raise PluginError(f"Plugin '{name}': {exc}") from exc
            plugin = LoadedPlugin(name=name, version=descriptor.version, descriptor=descriptor, providers=providers)
            self._loaded[name] = plugin
            loaded.append(plugin)
            LOG.info("Loaded plugin", extra={"plugin": name, "hooks": plugin.hook_count})
        return loaded

    async def shutdown(self) -> None:
        """Run ``on_shutdown`` of loaded plugins, most recently loaded first."""

        for plugin in reversed(list(self._loaded.values())):
            try:
                await plugin.descriptor.on_shutdown()
            except Exception:
                LOG.exception("Plugin shutdown failed", extra={"plugin": plugin.name})

    @property
    def loaded(self) -> Sequence[LoadedPlugin]:
        return tuple(self._loaded.values())

    def _is_enabled(self, name: str) -> bool:
        if self._enabled is not None:
            return name in self._enabled
        return name not in self._disabled

    def _check_min_core(self, descriptor: PluginDescriptor) -> None:
        min_core = getattr(descriptor, "min_core", "0.0.0")
        if self._core < version_key(min_core):
            raise PluginCompatibilityError(
                f"Plugin '{descriptor.name}' requires core>={min_core}, found {self._core_version}"
            )

    def _collect_providers(self, descriptor: PluginDescriptor) -> tuple[HookProvider, ...]:
        try:
            providers = tuple(descriptor.register(self._ctx) or ())
        except Exception as exc:
            LOG.exception("Plugin registration failed", extra={"plugin": descriptor.name})
            raise PluginError(f"Failed to register plugin '{descriptor.name}'") from exc
        for provider in providers:
            if not isinstance(provider, HookProvider):
                raise PluginError(
                    f"Plugin '{descriptor.name}' returned {type(provider).__name__}, expected HookProvider"
                )
        return providers


def _instantiate(obj: PluginDescriptor | type[PluginDescriptor]) -> PluginDescriptor:
    if inspect.isclass(obj):
        return obj()  # type: ignore[call-arg]
    return obj
