"""Argument coercion from loosely typed caller input to declared types.

Runs before binding. Each declared type has one conversion function; a
conversion that cannot succeed raises ``ValueError`` with a short reason,
which ``coerce_arguments`` reports as ``TypeCoercionError``.
"""

from __future__ import annotations

import math
from typing import Any, Callable, Mapping, Sequence

from .errors import MissingArgumentError, TypeCoercionError
from .models import ArgumentValue, ParameterSpec, ParameterType

_FALSE_WORDS = frozenset({"false", "0", "", "no", "off"})
_TRUE_WORDS = frozenset({"true", "1", "yes", "on"})


def _coerce_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ValueError(f"expected a string, got {type(value).__name__}")


def _coerce_number(value: Any) -> int | float:
    if isinstance(value, bool):
        raise ValueError("expected a number, got boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"expected a finite number, got {value!r}")
        return value
    if not isinstance(value, str):
        raise ValueError(f"expected a number, got {type(value).__name__}")
    text = value.strip()
    if not text:
        raise ValueError("expected a number, got an empty string")
    if "_" in text:
        raise ValueError(f"expected a number, got {value!r}")
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError as exc:
        raise ValueError(f"expected a number, got {value!r}") from exc
    if not math.isfinite(number):
        raise ValueError(f"expected a finite number, got {value!r}")
    return number


def _coerce_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _FALSE_WORDS:
            return False
        if word in _TRUE_WORDS:
            return True
        return True
    if isinstance(value, (list, dict)):
        raise ValueError(f"expected a boolean, got {type(value).__name__}")
    return bool(value)


_COERCERS: dict[ParameterType, Callable[[Any], ArgumentValue]] = {
    ParameterType.STRING: _coerce_string,
    ParameterType.NUMBER: _coerce_number,
    ParameterType.BOOLEAN: _coerce_boolean,
}


def coerce_value(spec: ParameterSpec, value: Any) -> ArgumentValue:
    """Convert a single value to ``spec.type``."""

    coerce = _COERCERS[ParameterType(spec.type)]
    try:
        return coerce(value)
    except ValueError as exc:
        raise TypeCoercionError(spec.name, str(exc)) from exc


def coerce_arguments(
    parameters: Sequence[ParameterSpec],
    arguments: Mapping[str, Any] | None,
) -> dict[str, ArgumentValue]:
    """Return coerced arguments in declaration order.

    Omitted (or ``None``) arguments fall back to the declared default;
    required parameters without one raise ``MissingArgumentError``.
    Undeclared keys are dropped.
    """

    raw = dict(arguments or {})
    coerced: dict[str, ArgumentValue] = {}
    for spec in parameters:
        value = raw.get(spec.name)
        if value is None:
            if spec.default is not None:
                coerced[spec.name] = coerce_value(spec, spec.default)
            elif spec.required:
                raise MissingArgumentError(spec.name)
            continue
        coerced[spec.name] = coerce_value(spec, value)
    return coerced


__all__ = ["coerce_arguments", "coerce_value"]
