"""
Scalar coercion helpers shared by request accessors, token claims and the
argument binder.

Absent or unconvertible values fall back to the caller's default, which in
turn defaults to the per-type "unset" sentinel.
"""

from __future__ import annotations

import json
import re
import sys
from typing import Any

INT_UNSET = -2 ** 63
FLOAT_UNSET = sys.float_info.min

_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")

_TRUE = frozenset({"1", "true", "yes", "on", "y"})
_FALSE = frozenset({"0", "false", "no", "off", "n", ""})


def to_int(value: Any, default: int = INT_UNSET) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if _INT_RE.match(text):
            return int(text)
        if _FLOAT_RE.match(text):
            return int(float(text))
    return default


def to_float(value: Any, default: float = FLOAT_UNSET) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and _FLOAT_RE.match(value.strip()):
        return float(value.strip())
    return default


def to_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    return default


def to_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return default


def to_list(value: Any, default: list | None = None) -> list:
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str) and value.strip().startswith("["):
        try:
            parsed = json.loads(value)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return parsed
    return list(default) if default is not None else []


CASTERS = {
    "int": to_int,
    "float": to_float,
    "bool": to_bool,
    "string": to_str,
    "array": to_list,
}

SENTINELS = {
    "int": INT_UNSET,
    "float": FLOAT_UNSET,
    "bool": False,
    "string": "",
}


def cast(value: Any, type_name: str, default: Any = None, has_default: bool = False) -> Any:
    """
    Coerce ``value`` to ``type_name``.

    ``None`` means absent: the declared default (itself coerced) is used,
    otherwise the type's sentinel.

    Raises:
        KeyError: for an unknown type name
    """
    caster = CASTERS[type_name]
    if type_name == "array":
        fallback = to_list(default) if has_default else []
        return fallback if value is None else caster(value, fallback)

    fallback = SENTINELS[type_name]
    if has_default:
        fallback = caster(default, fallback)
    if value is None:
        return fallback
    return caster(value, fallback)
