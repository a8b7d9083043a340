"""Shared dataclasses describing sources, tools and call results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import quote

ArgumentValue = str | float | int | bool


class ParameterType(str, Enum):
    """Declared type of a tool parameter."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"


@dataclass(frozen=True, slots=True)
class SourceDefinition:
    """How to reach a database: an opaque DSN or a structured endpoint."""

    name: str
    connection_string: str | None = None
    host: str | None = None
    port: int | None = None
    database: str | None = None
    user: str | None = None
    password: str | None = None

    def __post_init__(self) -> None:
        structured = (self.host, self.port, self.database, self.user, self.password)
        has_structured = any(value is not None for value in structured)
        if self.connection_string and has_structured:
            raise ValueError(f"Source '{self.name}' mixes connection_string with host parameters")
        if not self.connection_string and any(value is None for value in structured):
            raise ValueError(
                f"Source '{self.name}' needs a connection_string or host, port, database, user and password"
            )

    def dsn(self) -> str:
        """Return the connection string used to build the pool."""

        if self.connection_string:
            return self.connection_string
        user = quote(str(self.user), safe="")
        password = quote(str(self.password), safe="")
        return f"postgresql://{user}:{password}@{self.host}:{self.port}/{self.database}"


@dataclass(frozen=True, slots=True)
class ParameterSpec:
    """A single declared tool parameter."""

    name: str
    type: ParameterType
    description: str = ""
    required: bool = True
    default: ArgumentValue | None = None


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """A named SQL statement template plus its parameter specs."""

    name: str
    source: str
    statement: str
    description: str = ""
    parameters: tuple[ParameterSpec, ...] = ()


@dataclass(frozen=True, slots=True)
class BoundQuery:
    """Statement rewritten to native positional placeholders plus its values."""

    text: str
    values: tuple[Any, ...] = ()


@dataclass(frozen=True, slots=True)
class TextContent:
    """Text block of a tool result."""

    text: str
    type: str = "text"


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Structured result handed back to the protocol layer."""

    content: tuple[TextContent, ...] = field(default_factory=tuple)
    is_error: bool = False

    @classmethod
    def from_text(cls, text: str) -> ToolResult:
        return cls(content=(TextContent(text=text),))

    @classmethod
    def failure(cls, tool_name: str, message: str) -> ToolResult:
        """Build the error payload reported for a failed invocation."""

        return cls(
            content=(TextContent(text=f"Error executing tool '{tool_name}': {message}"),),
            is_error=True,
        )

    @property
    def text(self) -> str:
        return "".join(block.text for block in self.content)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "content": [{"type": block.type, "text": block.text} for block in self.content],
        }
        if self.is_error:
            payload["isError"] = True
        return payload


__all__ = [
    "ArgumentValue",
    "BoundQuery",
    "ParameterSpec",
    "ParameterType",
    "SourceDefinition",
    "TextContent",
    "ToolDefinition",
    "ToolResult",
]
