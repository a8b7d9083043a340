"""Expose parameterized PostgreSQL statements as callable tools."""

from __future__ import annotations

__version__ = "0.1.0"

from .errors import (  # noqa: E402
    ConfigError,
    DatabaseError,
    HookExecutionError,
    MissingArgumentError,
    MissingParameterError,
    ToolboxError,
    TypeCoercionError,
    UnknownToolError,
)
from .models import (  # noqa: E402
    BoundQuery,
    ParameterSpec,
    ParameterType,
    SourceDefinition,
    TextContent,
    ToolDefinition,
    ToolResult,
)
from .toolbox import Toolbox  # noqa: E402

__all__ = [
    "BoundQuery",
    "ConfigError",
    "DatabaseError",
    "HookExecutionError",
    "MissingArgumentError",
    "MissingParameterError",
    "ParameterSpec",
    "ParameterType",
    "SourceDefinition",
    "TextContent",
    "ToolDefinition",
    "ToolResult",
    "Toolbox",
    "ToolboxError",
    "TypeCoercionError",
    "UnknownToolError",
    "__version__",
]
