"""Template interpolation of ``{{path.expression}}`` tokens in step parameters.

Supported paths:

- ``{{trigger.payload.field}}`` - trigger data
- ``{{steps.<node-id>.data.field}}`` - a recorded step output, by node id
- ``{{steps.http1.data.items[0].name}}`` - array indexes
- ``{{steps["node-id"].data}}`` - quoted segments

A path that does not resolve is left in the output exactly as written.
Unresolved tokens are logged and can be listed with :func:`find_unresolved`
so callers can surface them; they are never raised as errors.
"""

import json
import re
from typing import Any, Dict, List, Union

from .context import ExecutionContext
from .logging import get_logger

logger = get_logger(__name__)

VARIABLE_PATTERN = re.compile(r'\{\{([^}]+)\}\}')

_MISSING = object()

PathPart = Union[str, int]


def resolve(value: Any, context: Union[ExecutionContext, Dict[str, Any]]) -> Any:
    """
    Return a copy of ``value`` with every template token substituted.

    Args:
        value: Parameter value (string, list, dict or scalar)
        context: Execution context, or a prepared ``{"trigger", "steps"}`` lookup

    Returns:
        The interpolated value; non-string leaves are returned unchanged
    """
    lookup = context.as_lookup() if isinstance(context, ExecutionContext) else context
    return _resolve_value(value, lookup)


def _resolve_value(value: Any, lookup: Dict[str, Any]) -> Any:
    if isinstance(value, str):
        return _resolve_string(value, lookup)
    if isinstance(value, list):
        return [_resolve_value(item, lookup) for item in value]
    if isinstance(value, tuple):
        return tuple(_resolve_value(item, lookup) for item in value)
    if isinstance(value, dict):
        return {key: _resolve_value(item, lookup) for key, item in value.items()}
    return value


def _resolve_string(text: str, lookup: Dict[str, Any]) -> str:
    def replace(match: "re.Match[str]") -> str:
        path = match.group(1).strip()
        found = lookup_path(lookup, path)
        if found is _MISSING:
            logger.warning(f"Variable not found, leaving template unchanged: {path}")
            return match.group(0)
        return stringify(found)

    return VARIABLE_PATTERN.sub(replace, text)


def stringify(value: Any) -> str:
    """String form used when a value is embedded in a template."""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple, bool)) or value is None:
        return json.dumps(value, default=str)
    return str(value)


def lookup_path(root: Any, path: str) -> Any:
    """Walk ``path`` through ``root``; returns a private sentinel when unresolved."""
    parts = parse_path(path)
    if not parts or parts[0] not in ("trigger", "steps"):
        return _MISSING

    current = root
    for part in parts:
        if isinstance(part, int):
            if not isinstance(current, list) or not -len(current) <= part < len(current):
                return _MISSING
            current = current[part]
        elif isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        else:
            return _MISSING
    return current


def is_resolvable(root: Dict[str, Any], path: str) -> bool:
    return lookup_path(root, path) is not _MISSING


def parse_path(path: str) -> List[PathPart]:
    """
    Split a dotted path into segments.

    ``trigger.payload`` -> ``["trigger", "payload"]``;
    ``steps["node-id"].data`` -> ``["steps", "node-id", "data"]``;
    ``items[0].name`` -> ``["items", 0, "name"]``.
    """
    parts: List[PathPart] = []
    current = ""
    in_bracket = False
    quote_char = ""

    for char in path:
        if quote_char:
            if char == quote_char:
                quote_char = ""
            else:
                current += char
            continue

        if char in ('"', "'"):
            quote_char = char
            continue

        if char == "[":
            if current:
                parts.append(current)
                current = ""
            in_bracket = True
            continue

        if char == "]":
            if current:
                parts.append(int(current) if re.fullmatch(r'-?\d+', current) else current)
                current = ""
            in_bracket = False
            continue

        if char == "." and not in_bracket:
            if current:
                parts.append(current)
                current = ""
            continue

        current += char

    if current:
        parts.append(current)

    return parts


def extract_variables(value: Any) -> List[str]:
    """List every template path referenced anywhere inside ``value``."""
    variables: List[str] = []

    def scan(item: Any) -> None:
        if isinstance(item, str):
            variables.extend(match.group(1).strip() for match in VARIABLE_PATTERN.finditer(item))
        elif isinstance(item, (list, tuple)):
            for element in item:
                scan(element)
        elif isinstance(item, dict):
            for element in item.values():
                scan(element)

    scan(value)
    return variables


def has_variables(value: Any) -> bool:
    return bool(extract_variables(value))


def find_unresolved(value: Any, context: Union[ExecutionContext, Dict[str, Any]]) -> List[str]:
    """Template paths in ``value`` that would be passed through unresolved."""
    lookup = context.as_lookup() if isinstance(context, ExecutionContext) else context
    return [path for path in extract_variables(value) if not is_resolvable(lookup, path)]
