"""Placeholder substitution for action fields.

Fields such as URLs, request bodies, webhook payloads and script code may
reference the execution context with ``{{name}}`` or ``{{a.b.c}}``.
Unresolvable placeholders are left in the output exactly as written.
"""

import json
import re
from typing import Any, Mapping

_PLACEHOLDER = re.compile(r"\{\{(\w+(?:\.\w+)*)\}\}")


class _Missing:
    """Sentinel for a path that does not resolve."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def resolve_path(context: Any, path: str) -> Any:
    """Walk a dot path through nested mappings and sequences.

    A decimal segment indexes into a list or tuple (``items.0.id``).
    Reaching a scalar or None before the last segment, a missing key or an
    out-of-range index yields ``MISSING``.
    """
    current = context
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdecimal():
            index = int(part)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def to_text(value: Any) -> str:
    """Render a context value the way it appears inside an interpolated string."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def interpolate(template: str, context: Mapping[str, Any] | None) -> str:
    """Replace every resolvable ``{{path}}`` in ``template``.

    Never raises; non-string templates are returned unchanged.
    """
    if not isinstance(template, str) or "{{" not in template:
        return template
    ctx = context or {}

    def _sub(match: re.Match) -> str:
        value = resolve_path(ctx, match.group(1))
        if value is MISSING:
            return match.group(0)
        return to_text(value)

    return _PLACEHOLDER.sub(_sub, template)
