"""Ordered registry of hook providers and the before-query pipeline."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Mapping

from pgtoolbox.errors import HookExecutionError

from .types import (
    BeforeQueryCallback,
    BeforeQueryHook,
    BeforeQueryResult,
    HookContext,
    HookProvider,
    SessionSettings,
)

LOG = logging.getLogger(__name__)

ROLE_SETTING = "role"
JWT_ROLE_SETTING = "jwt.claims.role"


class HookRegistry:
    """Collects hook providers and runs their callbacks in registration order."""

    def __init__(self) -> None:
        self._providers: dict[str, HookProvider] = {}
        self._before_query: list[BeforeQueryHook] = []

    def register(self, provider: HookProvider, *, plugin: str | None = None) -> None:
        """Register a provider; its callbacks run after those already registered.

        ``plugin`` names the owning plugin in hook failures and defaults to the
        provider name. Provider names are unique within a registry.
        """

        if provider.name in self._providers:
            raise ValueError(f"Hook provider '{provider.name}' is already registered")
        self._providers[provider.name] = provider
        self._before_query.extend(provider.hooks(plugin))

    def register_hook(self, callback: BeforeQueryCallback, plugin_name: str = "anonymous") -> None:
        """Register a bare before-query callback without a provider."""

        self._before_query.append(BeforeQueryHook(plugin=plugin_name, callback=callback))

    def providers(self) -> list[HookProvider]:
        return list(self._providers.values())

    def get(self, name: str) -> HookProvider | None:
        return self._providers.get(name)

    def __len__(self) -> int:
        return len(self._before_query)

    async def run_before_query(self, ctx: HookContext) -> SessionSettings:
        """Run every before-query callback sequentially and merge their settings.

        Later callbacks win on repeated keys. The first failure stops the
        pipeline and is raised as ``HookExecutionError``.
        """

        merged: SessionSettings = {}
        for hook in self._before_query:
            try:
                result = hook.callback(ctx)
                if inspect.isawaitable(result):
                    result = await result
                settings = _settings_of(result)
            except Exception as exc:
                LOG.exception(
                    "Plugin failed during before_query hook",
                    extra={"plugin": hook.plugin, "tool": ctx.tool_name},
                )
                raise HookExecutionError(hook.plugin, exc) from exc
            for key, value in settings.items():
                merged[str(key)] = str(value)
        return merged


def _settings_of(result: object) -> Mapping[str, Any]:
    if result is None:
        return {}
    if isinstance(result, BeforeQueryResult):
        return result.settings or {}
    if isinstance(result, Mapping):
        return result
    raise TypeError(f"before_query hooks must return a mapping or BeforeQueryResult, got {type(result).__name__}")


def with_role_alias(settings: Mapping[str, str]) -> SessionSettings:
    """Copy ``settings`` adding ``role`` from ``jwt.claims.role`` when unset."""

    resolved = dict(settings)
    if ROLE_SETTING not in resolved and JWT_ROLE_SETTING in resolved:
        resolved[ROLE_SETTING] = resolved[JWT_ROLE_SETTING]
    return resolved
