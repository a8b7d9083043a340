"""Error taxonomy shared by the binder, coercer, hooks and executor."""

from __future__ import annotations


class ToolboxError(RuntimeError):
    """Base error for every failure raised while serving a tool call."""


class MissingArgumentError(ToolboxError):
    """Raised when a required parameter has no argument and no default."""

    def __init__(self, parameter: str) -> None:
        super().__init__(f"Missing required argument '{parameter}'")
        self.parameter = parameter


class TypeCoercionError(ToolboxError):
    """Raised when an argument cannot be converted to its declared type."""

    def __init__(self, parameter: str, reason: str) -> None:
        super().__init__(f"Parameter '{parameter}': {reason}")
        self.parameter = parameter
        self.reason = reason


class MissingParameterError(ToolboxError):
    """Raised when a statement references a placeholder with no argument."""

    def __init__(self, parameter: str) -> None:
        super().__init__(f"Parameter :{parameter} not provided")
        self.parameter = parameter


class HookExecutionError(ToolboxError):
    """Raised when a before-query callback fails; aborts the invocation."""

    def __init__(self, plugin: str, cause: BaseException) -> None:
        super().__init__(str(cause))
        self.plugin = plugin


class DatabaseError(ToolboxError):
    """Raised for connect, settings or query failures reported by the driver."""


class UnknownToolError(ToolboxError):
    """Raised when a call names a tool that is not in the catalog."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool '{name}'")
        self.name = name


class ConfigError(ToolboxError, ValueError):
    """Raised when the tool catalog cannot be read or fails validation."""


__all__ = [
    "ConfigError",
    "DatabaseError",
    "HookExecutionError",
    "MissingArgumentError",
    "MissingParameterError",
    "ToolboxError",
    "TypeCoercionError",
    "UnknownToolError",
]
