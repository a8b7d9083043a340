"""Hook pipeline and plugin loader exports."""

from .loader import LoadedPlugin, PluginLoader
from .registry import JWT_ROLE_SETTING, ROLE_SETTING, HookRegistry, with_role_alias
from .types import (
    BeforeQueryCallback,
    BeforeQueryHook,
    BeforeQueryResult,
    HookContext,
    HookKind,
    HookProvider,
    HookSpec,
    PluginCompatibilityError,
    PluginContext,
    PluginDescriptor,
    PluginError,
    SessionSettings,
)

__all__ = [
    "BeforeQueryCallback",
    "BeforeQueryHook",
    "BeforeQueryResult",
    "HookContext",
    "HookKind",
    "HookProvider",
    "HookRegistry",
    "HookSpec",
    "JWT_ROLE_SETTING",
    "LoadedPlugin",
    "PluginCompatibilityError",
    "PluginContext",
    "PluginDescriptor",
    "PluginError",
    "PluginLoader",
    "ROLE_SETTING",
    "SessionSettings",
    "with_role_alias",
]
