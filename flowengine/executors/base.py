"""Step executor contract shared by built-in and user executors."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.context import ExecutionContext
from ..core.notifications import NotificationChannel
from ..models.core import WaitKind, utcnow


@dataclass(frozen=True)
class Suspend:
    """Returned by an executor instead of an output to park the execution.

    ``timeout`` is in seconds; when omitted the node's ``timeout`` or the
    workflow ``wait_timeout`` is used as the deadline.
    """
    kind: WaitKind = WaitKind.EVENT
    event_type: Optional[str] = None
    timeout: Optional[float] = None
    notification: Optional[Dict[str, Any]] = None


@dataclass
class StepEnvironment:
    """Explicit handle to the engine environment for one step attempt."""
    execution_id: str
    workflow_id: str
    node_id: str
    attempt_number: int
    notifier: NotificationChannel
    clock: Callable[[], datetime] = field(default=utcnow)

    def now(self) -> datetime:
        return self.clock()


class StepExecutor(ABC):
    """Executes one step type.

    Implementations must tolerate being called again with the same resolved
    parameters when the engine retries a failed attempt.
    """

    type: str = ""
    category: str = "action"
    required_parameters: Tuple[str, ...] = ()
    description: str = ""

    def validate_parameters(self, parameters: Dict[str, Any]) -> List[str]:
        """Return human readable problems with ``parameters``; empty when valid."""
        errors = []
        for name in self.required_parameters:
            value = parameters.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                errors.append(f"Missing required parameter '{name}'")
        return errors

    @abstractmethod
    def execute(self, node_id: str, parameters: Dict[str, Any], context: ExecutionContext,
                env: StepEnvironment) -> Any:
        """Run the step and return its output, or a :class:`Suspend` marker.

        Raises:
            ExecutionError: the attempt failed and may be retried
        """


class FunctionExecutor(StepExecutor):
    """Adapts a plain callable ``fn(node_id, parameters, context, env)`` to the contract."""

    def __init__(self, step_type: str, function: Callable[..., Any],
                 required_parameters: Tuple[str, ...] = (), category: str = "action",
                 description: str = ""):
        if not callable(function):
            raise TypeError(f"Executor for '{step_type}' must be callable")
        self.type = step_type
        self.function = function
        self.required_parameters = tuple(required_parameters)
        self.category = category
        self.description = description or (function.__doc__ or "").strip()

    def execute(self, node_id, parameters, context, env):
        return self.function(node_id, parameters, context, env)
