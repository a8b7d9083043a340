"""Host-facing facade that wires the catalog, hooks, pools and executor."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Mapping

from pydantic import Field, create_model

from .binder import placeholder_names
from .config import ToolboxConfig, load_config
from .errors import UnknownToolError
from .executor import QueryExecutor
from .hooks import HookProvider, HookRegistry, LoadedPlugin, PluginContext, PluginDescriptor, PluginLoader
from .models import ParameterType, SourceDefinition, ToolDefinition, ToolResult
from .pools import PoolManager

LOG = logging.getLogger(__name__)

_PYTHON_TYPES: dict[ParameterType, type] = {
    ParameterType.STRING: str,
    ParameterType.NUMBER: float,
    ParameterType.BOOLEAN: bool,
}


class Toolbox:
    """Serves tool calls for one validated catalog.

    Owns the pool manager for its lifetime; ``close()`` (or leaving the
    ``async with`` block) tears every pool down.
    """

    def __init__(
        self,
        config: ToolboxConfig,
        *,
        hooks: HookRegistry | None = None,
        pool_manager: PoolManager | None = None,
        builtin_plugins: Iterable[PluginDescriptor | type[PluginDescriptor]] | None = None,
    ) -> None:
        self._config = config
        self._sources: dict[str, SourceDefinition] = config.source_definitions()
        self._tools: dict[str, ToolDefinition] = config.tool_definitions()
        self._hooks = hooks if hooks is not None else HookRegistry()
        self._pools = pool_manager if pool_manager is not None else PoolManager(config.pool.to_settings())
        self._executor = QueryExecutor(self._pools, self._hooks)
        self._builtin_plugins = list(builtin_plugins or [])
        self._loader: PluginLoader | None = None
        for tool in self._tools.values():
            _warn_undeclared_placeholders(tool)

    @classmethod
    def from_file(cls, path: str | Path, **kwargs: Any) -> Toolbox:
        return cls(load_config(path), **kwargs)

    @property
    def config(self) -> ToolboxConfig:
        return self._config

    @property
    def tools(self) -> Mapping[str, ToolDefinition]:
        return dict(self._tools)

    @property
    def hooks(self) -> HookRegistry:
        return self._hooks

    @property
    def pools(self) -> PoolManager:
        return self._pools

    def list_tools(self) -> list[dict[str, Any]]:
        """Describe every tool with a JSON Schema for its arguments."""

        return [
            {"name": tool.name, "description": tool.description, "inputSchema": input_schema(tool)}
            for tool in self._tools.values()
        ]

    def register_plugin(self, provider: HookProvider) -> None:
        """Register a hook provider directly, after any already registered.

        Raises ``ValueError`` when a provider of the same name is registered.
        """

        self._hooks.register(provider)

    def load_plugins(self) -> list[LoadedPlugin]:
        """Discover entry-point plugins and register their hooks.

        Plugins loaded by an earlier call are not registered again.
        """

        if self._loader is None:
            allowlist, disabled = self._config.plugin_filters()
            self._loader = PluginLoader(
                PluginContext(toolbox=self, config=self._config),
                enabled_plugins=allowlist,
                disabled_plugins=disabled,
                builtin_plugins=self._builtin_plugins,
            )
        loaded = self._loader.load(self._hooks)
        LOG.debug("Loaded plugins", extra={"plugins": [plugin.name for plugin in loaded]})
        return loaded

    async def call_tool(
        self,
        name: str,
        arguments: Mapping[str, Any] | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> ToolResult:
        """Invoke a tool; failures come back as error results, never raised."""

        tool = self._tools.get(name)
        if tool is None:
            return ToolResult.failure(name, str(UnknownToolError(name)))
        return await self._executor.execute(tool, self._sources[tool.source], arguments, extra)

    async def close(self) -> None:
        await self._pools.close_all()
        if self._loader is not None:
            await self._loader.shutdown()

    async def __aenter__(self) -> Toolbox:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()


def input_schema(tool: ToolDefinition) -> dict[str, Any]:
    """JSON Schema describing ``tool``'s arguments."""

    fields: dict[str, Any] = {}
    for spec in tool.parameters:
        annotation: Any = _PYTHON_TYPES[ParameterType(spec.type)]
        if spec.default is not None:
            fields[spec.name] = (annotation, Field(default=spec.default, description=spec.description))
        elif spec.required:
            fields[spec.name] = (annotation, Field(description=spec.description))
        else:
            fields[spec.name] = (annotation | None, Field(default=None, description=spec.description))
    model = create_model(f"{tool.name}_arguments", **fields)
    return model.model_json_schema()


def _warn_undeclared_placeholders(tool: ToolDefinition) -> None:
    declared = {spec.name for spec in tool.parameters}
    for name in placeholder_names(tool.statement):
        if name not in declared:
            LOG.warning("Statement references an undeclared parameter", extra={"tool": tool.name, "parameter": name})


__all__ = ["Toolbox", "input_schema"]
