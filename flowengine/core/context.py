"""Execution context shared by the orchestrator and interpolation."""

import copy
import threading
from typing import Any, Dict, Iterable, Mapping, Optional

from ..models.core import TriggerContext
from .exceptions import StateManagementError


class ExecutionContext:
    """Trigger data plus the append-only map of recorded step outputs.

    Only the orchestrator writes to ``steps``; executors receive the context
    for reading and return their output instead of mutating it.
    """

    def __init__(self, trigger: TriggerContext, steps: Optional[Mapping[str, Any]] = None,
                 execution_id: Optional[str] = None):
        self.trigger = trigger
        self.execution_id = execution_id
        self._steps: Dict[str, Any] = dict(steps or {})
        self._lock = threading.RLock()

    @property
    def steps(self) -> Dict[str, Any]:
        """A copy of the recorded outputs keyed by node id."""
        with self._lock:
            return dict(self._steps)

    @property
    def completed_node_ids(self) -> Iterable[str]:
        with self._lock:
            return set(self._steps)

    def has_output(self, node_id: str) -> bool:
        with self._lock:
            return node_id in self._steps

    def get_output(self, node_id: str, default: Any = None) -> Any:
        with self._lock:
            return self._steps.get(node_id, default)

    def record(self, node_id: str, output: Any) -> None:
        """Record a node output. Each node id may be written exactly once."""
        with self._lock:
            if node_id in self._steps:
                raise StateManagementError(
                    f"Output for node {node_id} is already recorded",
                    execution_id=self.execution_id,
                    operation="record_step_output"
                )
            self._steps[node_id] = output

    def as_lookup(self) -> Dict[str, Any]:
        """Snapshot used for ``{{trigger...}}`` / ``{{steps...}}`` resolution."""
        with self._lock:
            return {
                "trigger": self.trigger.as_lookup(),
                "steps": copy.deepcopy(self._steps),
            }

    def snapshot(self) -> "ExecutionContext":
        """Independent copy handed to executors."""
        with self._lock:
            return ExecutionContext(self.trigger, copy.deepcopy(self._steps), self.execution_id)
