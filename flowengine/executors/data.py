"""Data-shaping step executors: filter, transform, aggregate and parse-json.

Each of them works on a list or object given inline (``items``/``input``)
or read from the context by path (``items_path``/``input_path``, such as
``steps.fetch.body.results``). Paths inside an item use the same dotted
and indexed syntax as template variables.
"""

import json
from typing import Any, Dict, List, Optional

from ..core import interpolation
from ..core.context import ExecutionContext
from ..core.exceptions import ExecutionError
from .base import StepExecutor
from .flow import OPERATORS, _to_number


def get_path(value: Any, path: Optional[str]) -> Any:
    """Walk ``path`` through ``value``; None when any segment is missing."""
    if not path:
        return value
    current = value
    for part in interpolation.parse_path(path):
        if isinstance(current, list):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return None
        elif isinstance(current, dict):
            if part not in current:
                return None
            current = current[part]
        else:
            return None
    return current


def set_path(target: Dict[str, Any], path: str, value: Any) -> None:
    """Assign ``value`` at a dotted ``path``, creating intermediate objects."""
    parts = path.split(".")
    current = target
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def resolve_from_context(context: ExecutionContext, path: str) -> Any:
    """Value at a ``trigger...``/``steps...`` path, or None."""
    lookup = context.as_lookup()
    if not interpolation.is_resolvable(lookup, path):
        return None
    return interpolation.lookup_path(lookup, path)


def _source(parameters: Dict[str, Any], context: ExecutionContext, inline: str, path_key: str,
            decode: bool = True) -> Any:
    value = parameters.get(inline)
    if value is None and parameters.get(path_key):
        return resolve_from_context(context, parameters[path_key])
    # A whole-value template such as "{{steps.fetch.body}}" arrives as JSON text.
    if decode and isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def _require_source(parameters: Dict[str, Any], inline: str, path_key: str) -> List[str]:
    if parameters.get(inline) is None and not parameters.get(path_key):
        return [f"Either {inline} or {path_key} is required"]
    return []


class FilterExecutor(StepExecutor):
    """Splits ``items`` into those matching ``conditions`` and the rest.

    Conditions use the condition step's operators; ``field`` is a path
    inside each item. ``mode`` is ``all`` (every condition) or ``any``.
    """

    type = "filter"
    category = "data"
    description = "Keeps the items of a list that match conditions"

    def validate_parameters(self, parameters):
        errors = _require_source(parameters, "items", "items_path")
        conditions = parameters.get("conditions")
        if not isinstance(conditions, list):
            errors.append("Conditions must be a list")
        else:
            for index, condition in enumerate(conditions):
                if not isinstance(condition, dict) or condition.get("operator") not in OPERATORS:
                    errors.append(f"Condition {index} has unknown operator")
        if parameters.get("mode", "all") not in ("all", "any"):
            errors.append(f"Unknown mode '{parameters.get('mode')}'")
        return errors

    def execute(self, node_id, parameters, context, env):
        items = _source(parameters, context, "items", "items_path")
        if not isinstance(items, list):
            raise ExecutionError("Could not resolve items list; provide items or a valid items_path",
                                 node_id=node_id)
        conditions = parameters.get("conditions") or []
        combine = all if parameters.get("mode", "all") == "all" else any

        kept, rejected = [], []
        for item in items:
            matches = [
                OPERATORS[condition["operator"]](get_path(item, condition.get("field")), condition.get("value"))
                for condition in conditions
            ]
            (kept if not matches or combine(matches) else rejected).append(item)

        return {
            "items": kept,
            "rejected": rejected,
            "original_count": len(items),
            "filtered_count": len(kept),
            "rejected_count": len(rejected),
        }


def _convert(value: Any, kind: Optional[str]) -> Any:
    if kind is None:
        return value
    if kind == "uppercase":
        return value.upper() if isinstance(value, str) else value
    if kind == "lowercase":
        return value.lower() if isinstance(value, str) else value
    if kind == "trim":
        return value.strip() if isinstance(value, str) else value
    if kind == "number":
        number = _to_number(value)
        if number is None:
            return value
        return int(number) if number.is_integer() and not isinstance(value, float) else number
    if kind == "string":
        return interpolation.stringify(value)
    if kind == "boolean":
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        return bool(value)
    if kind == "json":
        if isinstance(value, str):
            try:
                return json.loads(value)
            except ValueError:
                return value
        return value
    raise ExecutionError(f"Unknown field transform '{kind}'")


def flatten(value: Any, separator: str = ".", prefix: str = "") -> Dict[str, Any]:
    """Collapse nested objects into one level of ``separator``-joined keys."""
    if not isinstance(value, (dict, list)):
        return {prefix or "value": value}

    entries = enumerate(value) if isinstance(value, list) else value.items()
    result: Dict[str, Any] = {}
    for key, item in entries:
        name = f"{prefix}{separator}{key}" if prefix else str(key)
        if isinstance(item, dict):
            result.update(flatten(item, separator, name))
        else:
            result[name] = item
    return result


def unflatten(value: Dict[str, Any], separator: str = ".") -> Dict[str, Any]:
    """Inverse of :func:`flatten` for object keys."""
    result: Dict[str, Any] = {}
    for key, item in value.items():
        parts = key.split(separator)
        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = item
    return result


class TransformExecutor(StepExecutor):
    """Reshapes an object.

    Modes:
        map: build a new object from ``mapping`` entries ``{"from", "to", "transform"}``
        pick / omit: keep or drop the dotted paths listed in ``fields``
        rename: move ``mapping`` keys within the object
        flatten / unflatten: convert between nested and ``separator``-joined keys
    """

    type = "transform"
    category = "data"
    description = "Maps, picks, omits, renames or flattens fields of an object"

    MODES = ("map", "pick", "omit", "rename", "flatten", "unflatten")

    def validate_parameters(self, parameters):
        errors = _require_source(parameters, "input", "input_path")
        mode = parameters.get("mode")
        if mode not in self.MODES:
            errors.append(f"Mode must be one of {', '.join(self.MODES)}")
        if mode in ("map", "rename") and not isinstance(parameters.get("mapping"), list):
            errors.append("Mapping is required for map and rename modes")
        if mode in ("pick", "omit") and not isinstance(parameters.get("fields"), list):
            errors.append("Fields is required for pick and omit modes")
        return errors

    def execute(self, node_id, parameters, context, env):
        data = _source(parameters, context, "input", "input_path")
        if data is None:
            raise ExecutionError("Could not resolve input; provide input or a valid input_path", node_id=node_id)

        mode = parameters.get("mode", "map")
        mapping = parameters.get("mapping") or []
        fields = parameters.get("fields") or []
        separator = parameters.get("separator") or "."

        if mode == "map":
            result: Dict[str, Any] = {}
            for entry in mapping:
                set_path(result, entry["to"], _convert(get_path(data, entry["from"]), entry.get("transform")))
            changed = len(mapping)
        elif mode == "pick":
            result = {}
            for field in fields:
                value = get_path(data, field)
                if value is not None:
                    set_path(result, field, value)
            changed = len(fields)
        elif mode == "omit":
            result = json.loads(json.dumps(data)) if isinstance(data, dict) else {}
            for field in fields:
                *parents, leaf = field.split(".")
                holder = get_path(result, ".".join(parents)) if parents else result
                if isinstance(holder, dict):
                    holder.pop(leaf, None)
            changed = len(fields)
        elif mode == "rename":
            result = dict(data) if isinstance(data, dict) else {}
            for entry in mapping:
                value = get_path(result, entry["from"])
                if value is None:
                    continue
                if "." not in entry["from"]:
                    del result[entry["from"]]
                set_path(result, entry["to"], _convert(value, entry.get("transform")))
            changed = len(mapping)
        elif mode == "flatten":
            result = flatten(data, separator)
            changed = len(result)
        elif mode == "unflatten":
            if not isinstance(data, dict):
                raise ExecutionError("Input must be a flat object for unflatten mode", node_id=node_id)
            result = unflatten(data, separator)
            changed = len(data)
        else:
            raise ExecutionError(f"Unknown transform mode: {mode}", node_id=node_id)

        return {"data": result, "mode": mode, "fields_transformed": changed}


def _numbers(items: List[Any], field: Optional[str]) -> List[float]:
    values = (_to_number(get_path(item, field)) for item in items)
    return [value for value in values if value is not None]


def aggregate(items: List[Any], operation: str, field: Optional[str] = None) -> Any:
    """Apply one aggregate ``operation`` to ``items`` (or to ``field`` of each item)."""
    if operation == "count":
        return len(items)
    if operation == "sum":
        return sum(_numbers(items, field))
    if operation == "avg":
        numbers = _numbers(items, field)
        return sum(numbers) / len(numbers) if numbers else 0
    if operation == "min":
        return min(_numbers(items, field), default=None)
    if operation == "max":
        return max(_numbers(items, field), default=None)
    if operation == "first":
        return get_path(items[0], field) if items else None
    if operation == "last":
        return get_path(items[-1], field) if items else None
    if operation == "concat":
        combined: List[Any] = []
        for item in items:
            value = get_path(item, field)
            if isinstance(value, list):
                combined.extend(value)
            elif value is not None:
                combined.append(value)
        return combined
    if operation == "unique":
        seen = set()
        unique = []
        for item in items:
            value = get_path(item, field)
            key = json.dumps(value, sort_keys=True, default=str)
            if key not in seen:
                seen.add(key)
                unique.append(value)
        return unique
    raise ExecutionError(f"Unknown aggregate operation '{operation}'")


AGGREGATE_OPERATIONS = ("count", "sum", "avg", "min", "max", "first", "last", "concat", "unique")


class AggregateExecutor(StepExecutor):
    """Computes ``operations`` (``{"operation", "field", "output_name"}``) over a list."""

    type = "aggregate"
    category = "data"
    description = "Counts, sums, averages or collects values across a list"

    def validate_parameters(self, parameters):
        errors = _require_source(parameters, "items", "items_path")
        operations = parameters.get("operations")
        if not isinstance(operations, list) or not operations:
            errors.append("At least one operation is required")
            return errors
        for index, operation in enumerate(operations):
            if not isinstance(operation, dict) or operation.get("operation") not in AGGREGATE_OPERATIONS:
                errors.append(f"Operation {index} must be one of {', '.join(AGGREGATE_OPERATIONS)}")
            elif not operation.get("output_name"):
                errors.append(f"Operation {index} is missing output_name")
        return errors

    def execute(self, node_id, parameters, context, env):
        items = _source(parameters, context, "items", "items_path")
        if not isinstance(items, list):
            raise ExecutionError("Could not resolve items list", node_id=node_id)

        operations = parameters.get("operations") or []
        results = {
            operation["output_name"]: aggregate(items, operation["operation"], operation.get("field"))
            for operation in operations
        }
        return {"results": results, "item_count": len(items), "operation_count": len(operations)}


class ParseJsonExecutor(StepExecutor):
    """Parses a JSON string.

    With ``error_handling="default"`` an empty or malformed input yields
    ``default_value`` instead of failing the step.
    """

    type = "parse-json"
    category = "data"
    description = "Parses a JSON string into structured data"

    def validate_parameters(self, parameters):
        errors = _require_source(parameters, "input", "input_path")
        if parameters.get("error_handling", "error") not in ("error", "default"):
            errors.append("error_handling must be 'error' or 'default'")
        return errors

    def execute(self, node_id, parameters, context, env):
        use_default = parameters.get("error_handling", "error") == "default"
        default_value = parameters.get("default_value")
        raw = _source(parameters, context, "input", "input_path", decode=False)

        if raw is None or raw == "":
            if use_default:
                return {"data": default_value, "parsed": False, "reason": "input_empty"}
            raise ExecutionError("Input is empty or not found", node_id=node_id)

        if isinstance(raw, (dict, list)):
            return {"data": raw, "parsed": False, "reason": "already_parsed"}

        text = raw if isinstance(raw, str) else interpolation.stringify(raw)
        try:
            data = json.loads(text)
        except ValueError as e:
            if use_default:
                return {"data": default_value, "parsed": False, "reason": "parse_error", "error": str(e)}
            raise ExecutionError(f"Failed to parse JSON: {str(e)}", node_id=node_id)

        return {"data": data, "parsed": True, "input_length": len(text)}
