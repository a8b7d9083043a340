"""Tool catalog configuration loading helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Mapping

import tomllib
from jinja2 import Environment, TemplateError, pass_context
from jinja2.runtime import Context
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    model_validator,
)

from .errors import ConfigError
from .models import ParameterSpec, ParameterType, SourceDefinition, ToolDefinition
from .pools import DEFAULT_CONNECT_TIMEOUT, DEFAULT_IDLE_TIMEOUT, DEFAULT_MAX_CONNECTIONS, PoolSettings

SourceKind = Literal["postgres", "postgres-sql"]

_TEMPLATE_ENV: Environment | None = None


class SourceConfig(BaseModel):
    """A database source: either ``connection_string`` or host parameters."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: SourceKind = "postgres"
    connection_string: str | None = Field(default=None, min_length=1)
    host: str | None = Field(default=None, min_length=1)
    port: int | None = Field(default=None, ge=1, le=65535)
    database: str | None = Field(default=None, min_length=1)
    user: str | None = Field(default=None, min_length=1)
    password: str | None = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def _check_representation(self) -> SourceConfig:
        structured = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
        }
        present = [key for key, value in structured.items() if value is not None]
        if self.connection_string is not None:
            if present:
                raise ValueError(f"connection_string cannot be combined with {', '.join(present)}")
            return self
        missing = [key for key, value in structured.items() if value is None]
        if missing:
            raise ValueError(f"provide connection_string or all host parameters (missing {', '.join(missing)})")
        return self


class ParameterConfig(BaseModel):
    """A declared tool parameter."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(min_length=1, pattern=r"^[A-Za-z]\w*$")
    type: ParameterType
    description: str = Field(min_length=1)
    required: bool = True
    default: StrictBool | StrictInt | StrictFloat | StrictStr | None = None

    @model_validator(mode="after")
    def _check_default(self) -> ParameterConfig:
        if not self.required and self.default is None:
            raise ValueError("Parameters with required: false must have a default value")
        if self.default is not None and not _default_matches(self.type, self.default):
            raise ValueError("Default value type must match parameter type")
        return self


class ToolConfig(BaseModel):
    """A named SQL statement exposed as a tool."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: SourceKind | None = None
    source: str = Field(min_length=1)
    description: str = Field(min_length=1)
    parameters: list[ParameterConfig] = Field(default_factory=list)
    statement: str = Field(min_length=1)

    @model_validator(mode="after")
    def _check_unique_parameters(self) -> ToolConfig:
        seen: set[str] = set()
        for parameter in self.parameters:
            if parameter.name in seen:
                raise ValueError(f"Duplicate parameter '{parameter.name}'")
            seen.add(parameter.name)
        return self


class PoolConfig(BaseModel):
    """Limits applied to every connection pool."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_connections: int = Field(default=DEFAULT_MAX_CONNECTIONS, ge=1)
    idle_timeout: float = Field(default=DEFAULT_IDLE_TIMEOUT, gt=0)
    connect_timeout: float = Field(default=DEFAULT_CONNECT_TIMEOUT, gt=0)

    def to_settings(self) -> PoolSettings:
        return PoolSettings(
            max_connections=self.max_connections,
            idle_timeout=self.idle_timeout,
            connect_timeout=self.connect_timeout,
        )


class ToolboxConfig(BaseModel):
    """Shape of the tool catalog file."""

    model_config = ConfigDict(extra="forbid")

    sources: dict[str, SourceConfig] = Field(min_length=1)
    tools: dict[str, ToolConfig] = Field(min_length=1)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    plugins: dict[str, bool] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_references(self) -> ToolboxConfig:
        for name, tool in self.tools.items():
            if not name:
                raise ValueError("Tool names must not be empty")
            if tool.source not in self.sources:
                raise ValueError(f"Source '{tool.source}' not found for tool '{name}'")
        return self

    def plugin_filters(self) -> tuple[set[str] | None, set[str]]:
        """Return allow/block lists for plugin enablement."""

        allowed = {name for name, flag in self.plugins.items() if flag}
        disabled = {name for name, flag in self.plugins.items() if not flag}
        allowlist: set[str] | None = allowed or None
        return allowlist, disabled

    def source_definitions(self) -> dict[str, SourceDefinition]:
        return {
            name: SourceDefinition(
                name=name,
                connection_string=source.connection_string,
                host=source.host,
                port=source.port,
                database=source.database,
                user=source.user,
                password=source.password,
            )
            for name, source in self.sources.items()
        }

    def tool_definitions(self) -> dict[str, ToolDefinition]:
        return {
            name: ToolDefinition(
                name=name,
                source=tool.source,
                statement=tool.statement,
                description=tool.description,
                parameters=tuple(
                    ParameterSpec(
                        name=parameter.name,
                        type=parameter.type,
                        description=parameter.description,
                        required=parameter.required,
                        default=parameter.default,
                    )
                    for parameter in tool.parameters
                ),
            )
            for name, tool in self.tools.items()
        }


def load_config(path: str | Path, *, env: Mapping[str, str] | None = None) -> ToolboxConfig:
    """Read, render and validate a TOML tool catalog from disk."""

    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"Configuration file not found: {config_path}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read configuration file {config_path}: {exc}") from exc
    return load_config_string(text, env=env)


def load_config_string(text: str, *, env: Mapping[str, str] | None = None) -> ToolboxConfig:
    """Render template expressions, parse TOML and validate the result."""

    rendered = render_template(text, os.environ if env is None else env)
    try:
        data = tomllib.loads(rendered)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML syntax: {exc}") from exc
    try:
        return ToolboxConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


def render_template(text: str, env: Mapping[str, str]) -> str:
    """Render the catalog as a Jinja2 template over ``env``.

    Variables are reachable as ``{{ VAR }}`` or ``{{ env.VAR }}``; the helpers
    ``{{ default(VAR, "fallback") }}`` and ``{{ envDefault("VAR", "fallback") }}``
    substitute the fallback for unset or empty values. Unset variables render
    as empty strings. Rendered values are not rendered again.
    """

    variables = dict(env)
    try:
        return _template_environment().from_string(text).render({**variables, "env": variables})
    except TemplateError as exc:
        raise ConfigError(f"Template processing failed: {exc}") from exc


def _template_environment() -> Environment:
    global _TEMPLATE_ENV
    if _TEMPLATE_ENV is None:
        _TEMPLATE_ENV = Environment(autoescape=False, keep_trailing_newline=True)
        _TEMPLATE_ENV.globals.update(default=_default, envDefault=_env_default)
    return _TEMPLATE_ENV


def _default(value: Any, fallback: str) -> Any:
    return value or fallback


@pass_context
def _env_default(context: Context, name: str, fallback: str) -> Any:
    return context.get("env", {}).get(name) or fallback


def _default_matches(kind: ParameterType, value: object) -> bool:
    if kind is ParameterType.BOOLEAN:
        return isinstance(value, bool)
    if kind is ParameterType.NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    return isinstance(value, str)


__all__ = [
    "ParameterConfig",
    "PoolConfig",
    "SourceConfig",
    "ToolConfig",
    "ToolboxConfig",
    "load_config",
    "load_config_string",
    "render_template",
]
