"""Hook contract primitives shared by the registry, loader and plugins."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, NamedTuple, Protocol, Sequence

from pgtoolbox.models import ToolDefinition

if TYPE_CHECKING:
    from pgtoolbox.config import ToolboxConfig

SessionSettings = dict[str, str]


class HookKind(str, Enum):
    """Points in the invocation where hooks run."""

    BEFORE_QUERY = "before_query"


class HookContext(NamedTuple):
    """Read-only bundle handed to every before-query callback."""

    tool_name: str
    tool: ToolDefinition
    pool: Any
    arguments: Mapping[str, Any]
    extra: Mapping[str, Any]
    query: str


@dataclass(frozen=True, slots=True)
class BeforeQueryResult:
    """Partial session settings contributed by one callback."""

    settings: Mapping[str, Any] = field(default_factory=dict)


BeforeQueryReturn = BeforeQueryResult | Mapping[str, Any] | None
BeforeQueryCallback = Callable[[HookContext], BeforeQueryReturn | Awaitable[BeforeQueryReturn]]


@dataclass(frozen=True, slots=True)
class BeforeQueryHook:
    """A registered before-query callback and the plugin that owns it."""

    plugin: str
    callback: BeforeQueryCallback
    kind: HookKind = HookKind.BEFORE_QUERY


HookSpec = BeforeQueryHook


@dataclass(frozen=True, slots=True)
class HookProvider:
    """Named registration unit with optional callbacks per hook kind."""

    name: str
    before_query: BeforeQueryCallback | None = None

    def hooks(self, plugin: str | None = None) -> tuple[HookSpec, ...]:
        if self.before_query is None:
            return ()
        return (BeforeQueryHook(plugin=plugin or self.name, callback=self.before_query),)


class PluginContext(NamedTuple):
    """Runtime dependencies exposed to plugins at registration time."""

    toolbox: Any | None = None
    config: ToolboxConfig | None = None


class PluginDescriptor(Protocol):
    """Contract implemented by third-party plugins."""

    name: str
    version: str
    min_core: str

    def register(self, ctx: PluginContext) -> Sequence[HookProvider]: ...

    async def on_shutdown(self) -> None: ...


class PluginError(RuntimeError):
    """Base error for plugin loader failures."""


class PluginCompatibilityError(PluginError):
    """Raised when a plugin does not satisfy the minimum core version."""
