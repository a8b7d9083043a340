"""Sample plugin exposing request auth claims as ``jwt.claims.*`` settings."""

from __future__ import annotations

from typing import Mapping, Sequence

from pgtoolbox.hooks import BeforeQueryResult, HookContext, HookProvider, PluginContext, PluginDescriptor


class JwtClaimsPlugin(PluginDescriptor):
    """Copies ``extra["auth"]`` claims into transaction-local settings."""

    name = "jwt-claims"
    version = "0.0.1"
    min_core = "0.1.0"

    def __init__(self) -> None:
        self.shutdown_called = False
        self.last_context: PluginContext | None = None
        self.calls = 0

    def register(self, ctx: PluginContext) -> Sequence[HookProvider]:
        self.last_context = ctx
        return [HookProvider(name=self.name, before_query=self._before_query)]

    async def on_shutdown(self) -> None:
        self.shutdown_called = True

    async def _before_query(self, ctx: HookContext) -> BeforeQueryResult:
        self.calls += 1
        claims = ctx.extra.get("auth")
        if not isinstance(claims, Mapping):
            return BeforeQueryResult()
        return BeforeQueryResult(settings={f"jwt.claims.{key}": str(value) for key, value in claims.items()})
