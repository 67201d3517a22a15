"""Executor registry mapping step types to executor implementations."""

import threading
from typing import Dict, Iterable, List, Optional

from ..executors.base import StepExecutor
from .exceptions import ExecutorRegistryError
from .logging import get_logger

logger = get_logger(__name__)


class ExecutorRegistry:
    """Dispatch table from step ``type`` string to a :class:`StepExecutor`.

    The table is normally filled at construction time; ``register`` exists for
    wiring code that assembles the table in several steps before the engine
    starts.
    """

    def __init__(self, executors: Optional[Iterable[StepExecutor]] = None):
        self._executors: Dict[str, StepExecutor] = {}
        self._lock = threading.RLock()
        for executor in executors or ():
            self.register(executor)

    def register(self, executor: StepExecutor, replace: bool = False) -> None:
        """Register an executor under its ``type``.

        Raises:
            ExecutorRegistryError: If the type is empty or already registered
        """
        if not isinstance(executor, StepExecutor):
            raise ExecutorRegistryError(
                f"{executor!r} does not implement StepExecutor", operation="register"
            )

        step_type = (executor.type or "").strip()
        if not step_type:
            raise ExecutorRegistryError("Executor type cannot be empty", operation="register")

        with self._lock:
            if step_type in self._executors and not replace:
                raise ExecutorRegistryError(
                    f"Executor for step type '{step_type}' is already registered",
                    step_type=step_type, operation="register"
                )
            self._executors[step_type] = executor

        logger.debug(f"Registered executor '{step_type}' ({type(executor).__name__})")

    def get(self, step_type: str) -> StepExecutor:
        """Retrieve the executor for ``step_type``.

        Raises:
            ExecutorRegistryError: If no executor is registered for the type
        """
        with self._lock:
            executor = self._executors.get(step_type)
        if executor is None:
            raise ExecutorRegistryError(
                f"Unknown step type: {step_type}", step_type=step_type, operation="get"
            )
        return executor

    def exists(self, step_type: str) -> bool:
        with self._lock:
            return step_type in self._executors

    def unregister(self, step_type: str) -> bool:
        """Remove an executor; returns False when the type was not registered."""
        with self._lock:
            removed = self._executors.pop(step_type, None)
        if removed is not None:
            logger.info(f"Unregistered executor '{step_type}'")
        return removed is not None

    def list_types(self) -> Dict[str, str]:
        """Registered step types with their descriptions."""
        with self._lock:
            return {name: executor.description for name, executor in sorted(self._executors.items())}

    def types_in_category(self, category: str) -> List[str]:
        with self._lock:
            return sorted(name for name, executor in self._executors.items() if executor.category == category)

    def __contains__(self, step_type: str) -> bool:
        return self.exists(step_type)

    def __len__(self) -> int:
        with self._lock:
            return len(self._executors)
