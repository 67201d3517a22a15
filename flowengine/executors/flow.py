"""Data and control-flow step executors: set, condition and delay."""

import re
from typing import Any, Dict, List, Optional

from ..core import interpolation
from ..core.exceptions import ExecutionError
from ..models.core import WaitKind
from .base import StepExecutor, Suspend

MAX_DELAY_SECONDS = 24 * 60 * 60

_DURATION_PATTERN = re.compile(
    r'^(\d+(?:\.\d+)?)\s*(ms|milliseconds?|s|seconds?|m|minutes?|h|hours?|d|days?)$',
    re.IGNORECASE
)

_UNIT_SECONDS = {
    "ms": 0.001, "millisecond": 0.001, "milliseconds": 0.001,
    "s": 1, "second": 1, "seconds": 1,
    "m": 60, "minute": 60, "minutes": 60,
    "h": 3600, "hour": 3600, "hours": 3600,
    "d": 86400, "day": 86400, "days": 86400,
}


def parse_duration(duration: Any) -> float:
    """
    Convert a duration such as ``"500ms"``, ``"2s"``, ``"30 minutes"`` or ``"1d"`` to seconds.

    Plain numbers are taken as seconds. Unparseable input yields 0.
    """
    if isinstance(duration, bool):
        return 0.0
    if isinstance(duration, (int, float)):
        return float(duration)
    if not isinstance(duration, str):
        return 0.0

    text = duration.strip()
    match = _DURATION_PATTERN.match(text)
    if not match:
        try:
            return float(text)
        except ValueError:
            return 0.0
    return float(match.group(1)) * _UNIT_SECONDS[match.group(2).lower()]


class SetExecutor(StepExecutor):
    """Outputs its (already interpolated) ``values`` parameter."""

    type = "set"
    category = "data"
    required_parameters = ("values",)
    description = "Outputs a fixed or interpolated set of values"

    def execute(self, node_id, parameters, context, env):
        return parameters["values"]


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _compare_numbers(actual: Any, expected: Any, op) -> bool:
    left, right = _to_number(actual), _to_number(expected)
    if left is None or right is None:
        return False
    return op(left, right)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict)):
        return len(value) == 0
    return False


def _matches_regex(actual: Any, pattern: Any) -> bool:
    if not isinstance(actual, str) or not isinstance(pattern, str):
        return False
    try:
        return re.search(pattern, actual) is not None
    except re.error:
        return False


OPERATORS = {
    "equals": lambda a, e: a == e or str(a) == str(e),
    "notEquals": lambda a, e: a != e and str(a) != str(e),
    "contains": lambda a, e: (isinstance(a, str) and isinstance(e, str) and e in a)
    or (isinstance(a, list) and e in a),
    "notContains": lambda a, e: not ((isinstance(a, str) and isinstance(e, str) and e in a)
                                     or (isinstance(a, list) and e in a)),
    "startsWith": lambda a, e: isinstance(a, str) and isinstance(e, str) and a.startswith(e),
    "endsWith": lambda a, e: isinstance(a, str) and isinstance(e, str) and a.endswith(e),
    "greaterThan": lambda a, e: _compare_numbers(a, e, lambda x, y: x > y),
    "lessThan": lambda a, e: _compare_numbers(a, e, lambda x, y: x < y),
    "greaterThanOrEqual": lambda a, e: _compare_numbers(a, e, lambda x, y: x >= y),
    "lessThanOrEqual": lambda a, e: _compare_numbers(a, e, lambda x, y: x <= y),
    "isEmpty": lambda a, e: _is_empty(a),
    "isNotEmpty": lambda a, e: not _is_empty(a),
    "isTrue": lambda a, e: a is True,
    "isFalse": lambda a, e: a is False,
    "regex": _matches_regex,
}


class ConditionExecutor(StepExecutor):
    """Evaluates ``conditions`` against the context and reports the chosen branch.

    Each condition is ``{"field", "operator", "value", "branch"}``. ``field``
    is a ``trigger...``/``steps...`` path or a literal. In ``first`` mode the
    first match wins; in ``all`` mode every matching branch is reported.
    The output is informational: downstream nodes are not skipped.
    """

    type = "condition"
    category = "logic"
    description = "Evaluates conditions and outputs the matching branch"

    def validate_parameters(self, parameters):
        errors = []
        conditions = parameters.get("conditions")
        if not isinstance(conditions, list) or not conditions:
            errors.append("At least one condition is required")
            return errors
        for index, condition in enumerate(conditions):
            if not isinstance(condition, dict):
                errors.append(f"Condition {index} must be an object")
            elif condition.get("operator") not in OPERATORS:
                errors.append(f"Condition {index} has unknown operator '{condition.get('operator')}'")
        mode = parameters.get("mode", "first")
        if mode not in ("first", "all"):
            errors.append(f"Unknown mode '{mode}'")
        return errors

    def execute(self, node_id, parameters, context, env):
        conditions: List[Dict[str, Any]] = parameters.get("conditions") or []
        if not conditions:
            raise ExecutionError("No conditions configured", node_id=node_id)
        mode = parameters.get("mode", "first")
        default_branch = parameters.get("default_branch") or "default"
        lookup = context.as_lookup()

        results = []
        for condition in conditions:
            operator = OPERATORS.get(condition.get("operator"))
            if operator is None:
                raise ExecutionError(f"Unknown operator '{condition.get('operator')}'", node_id=node_id)
            actual = self._resolve_field(condition.get("field"), lookup)
            matched = bool(operator(actual, condition.get("value")))
            branch = condition.get("branch") or condition.get("output_branch")
            results.append({"field": condition.get("field"), "value": actual, "matched": matched,
                            "branch": branch})

            if mode == "first" and matched:
                return {"result": True, "matched": True, "branch": branch, "results": results}

        if mode == "all":
            branches = [r["branch"] for r in results if r["matched"]]
            return {
                "result": bool(branches),
                "matched": bool(branches),
                "branch": branches[0] if branches else default_branch,
                "branches": branches or [default_branch],
                "results": results,
            }

        return {"result": False, "matched": False, "branch": default_branch, "results": results}

    @staticmethod
    def _resolve_field(field: Any, lookup: Dict[str, Any]) -> Any:
        if not isinstance(field, str):
            return field
        if interpolation.is_resolvable(lookup, field):
            return interpolation.lookup_path(lookup, field)
        if field.startswith(("trigger.", "steps.", "steps[")):
            return None
        return field


class DelayExecutor(StepExecutor):
    """Suspends the execution until ``duration`` has elapsed.

    The delay is persisted as a wait record; no thread sleeps through it.
    """

    type = "delay"
    category = "flow"
    required_parameters = ("duration",)
    description = "Pauses the execution for a duration of up to 24 hours"

    def validate_parameters(self, parameters):
        errors = super().validate_parameters(parameters)
        if errors:
            return errors
        duration = parameters["duration"]
        if interpolation.has_variables(duration):
            return errors
        seconds = parse_duration(duration)
        if seconds <= 0:
            errors.append("Duration must be a positive value")
        elif seconds > MAX_DELAY_SECONDS:
            errors.append("Duration cannot exceed 24 hours")
        return errors

    def execute(self, node_id, parameters, context, env):
        seconds = parse_duration(parameters.get("duration"))
        if seconds <= 0:
            raise ExecutionError(f"Invalid duration {parameters.get('duration')!r}: must be positive",
                                 node_id=node_id)
        if seconds > MAX_DELAY_SECONDS:
            raise ExecutionError("Duration cannot exceed 24 hours", node_id=node_id)
        return Suspend(kind=WaitKind.DELAY, timeout=seconds)
