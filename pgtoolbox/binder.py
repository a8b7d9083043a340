"""Rewrite named statement placeholders into asyncpg positional parameters."""

from __future__ import annotations

import re
from typing import Any, Mapping, Sequence

from .errors import MissingParameterError
from .models import BoundQuery

# ``::type`` casts and ``12:30`` style literals are not placeholders.
_NAMED = re.compile(r"(?<![:\w]):([A-Za-z_]\w*)\b")
_POSITIONAL = re.compile(r"\$\d+\b")


def bind_parameters(
    statement: str,
    arguments: Mapping[str, Any],
    *,
    order: Sequence[str] | None = None,
) -> BoundQuery:
    """Bind ``arguments`` to ``statement`` without touching the values.

    Named placeholders (``:name``) get a positional slot the first time each
    distinct name is seen; repeated names reuse that slot. Statements that
    already use ``$n`` placeholders pass through with values in declaration
    order (``order`` when given, otherwise mapping order). Statements with
    neither are treated as parameterless.
    """

    if _NAMED.search(statement):
        return _bind_named(statement, arguments)
    if _POSITIONAL.search(statement):
        names = order if order is not None else tuple(arguments)
        return BoundQuery(text=statement, values=tuple(arguments[name] for name in names if name in arguments))
    return BoundQuery(text=statement)


def _bind_named(statement: str, arguments: Mapping[str, Any]) -> BoundQuery:
    positions: dict[str, int] = {}
    values: list[Any] = []

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in arguments:
            raise MissingParameterError(name)
        position = positions.get(name)
        if position is None:
            values.append(arguments[name])
            position = positions[name] = len(values)
        return f"${position}"

    text = _NAMED.sub(_replace, statement)
    return BoundQuery(text=text, values=tuple(values))


def placeholder_names(statement: str) -> tuple[str, ...]:
    """Distinct named placeholders in first-occurrence order."""

    seen: dict[str, None] = {}
    for match in _NAMED.finditer(statement):
        seen.setdefault(match.group(1), None)
    return tuple(seen)


__all__ = ["bind_parameters", "placeholder_names"]
