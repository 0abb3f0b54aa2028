from __future__ import annotations

import json
import math
import collections.abc
from typing import Any, Optional

import yaml

from squared.sq_datatypes import ScriptObject, ScriptFunction


# --------------------------
# Helpers
# --------------------------

def _is_callable_value(obj: Any) -> bool:
    return isinstance(obj, ScriptFunction) or (callable(obj) and not isinstance(obj, type))


def to_builtin(obj: Any, _active: Optional[set] = None) -> Any:
    """Converts a Squared value into plain JSON-compatible Python data.

    Objects become dicts (functions and builtins are omitted), integral numbers
    become ints and non-finite numbers become None. A container that contains
    itself is written as the string "[...]" or "{...}" at the point of the cycle.
    """
    if isinstance(obj, bool) or obj is None or isinstance(obj, str):
        return obj
    if isinstance(obj, float):
        if not math.isfinite(obj):
            return None
        return int(obj) if obj.is_integer() else obj
    if isinstance(obj, int):
        return obj
    if isinstance(obj, (list, collections.abc.Mapping)):
        active = _active if _active is not None else set()
        if id(obj) in active:
            return "[...]" if isinstance(obj, list) else "{...}"
        active.add(id(obj))
        try:
            if isinstance(obj, list):
                return [to_builtin(x, active) for x in obj]
            return {str(k): to_builtin(v, active) for k, v in obj.items() if not _is_callable_value(v)}
        finally:
            active.discard(id(obj))
    if _is_callable_value(obj):
        return None
    return str(obj)


def from_builtin(obj: Any, name: Optional[str] = None) -> Any:
    """Converts decoded JSON/YAML data into Squared values (dicts become objects, numbers floats)."""
    if isinstance(obj, bool) or obj is None or isinstance(obj, str):
        return obj
    if isinstance(obj, (int, float)):
        return float(obj)
    if isinstance(obj, list):
        return [from_builtin(x) for x in obj]
    if isinstance(obj, collections.abc.Mapping):
        return ScriptObject(name, {str(k): from_builtin(v) for k, v in obj.items()})
    return str(obj)


def detect_format(content_type: Optional[str] = None, locator: Optional[str] = None) -> Optional[str]:
    """
    Returns a canonical format name among: 'json', 'yaml'.
    Uses Content-Type first, then the locator's extension. None means Squared source.
    """
    ct = (content_type or "").lower()
    if 'json' in ct:
        return 'json'
    if 'yaml' in ct:
        return 'yaml'

    loc = (locator or "").lower()
    if loc.endswith('.json'):
        return 'json'
    if loc.endswith('.yaml') or loc.endswith('.yml'):
        return 'yaml'
    return None


# --------------------------
# Public API
# --------------------------

def deserialize(text: str, *, fmt: str) -> Any:
    """
    Convert JSON or YAML text to Squared values.
    Raises ValueError when the text is not valid in the chosen format.
    """
    f = (fmt or '').lower()
    if f == 'json':
        try:
            return from_builtin(json.loads(text))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e}") from e
    if f == 'yaml':
        try:
            return from_builtin(yaml.safe_load(text))
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML: {e}") from e
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


def serialize(value: Any, *, fmt: str = 'json') -> str:
    """
    Convert a Squared value into a textual representation.
    - fmt: 'json' (compact, no whitespace) | 'yaml'
    """
    f = (fmt or '').lower()
    built = to_builtin(value)
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, separators=(',', ':'))
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


__all__ = [
    "deserialize",
    "serialize",
    "detect_format",
    "to_builtin",
    "from_builtin",
]
