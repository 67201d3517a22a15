"""Durable workflow execution engine."""

from .core.catalog import WorkflowCatalog
from .core.exceptions import (
    CycleError,
    EventNotAwaitedError,
    ExecutionError,
    ExecutionNotFoundError,
    FatalError,
    StepTimeoutError,
    ValidationError,
    WorkflowEngineError,
)
from .core.orchestrator import WorkflowEngine
from .core.registry import ExecutorRegistry
from .executors import FunctionExecutor, StepEnvironment, StepExecutor, Suspend
from .factory import create_engine, create_registry
from .models import (
    ExecutionRecord,
    ExecutionStatusEnum,
    Node,
    WorkflowDefinition,
    WorkflowSettings,
)

__version__ = "1.0.0"

__all__ = [
    "CycleError",
    "EventNotAwaitedError",
    "ExecutionError",
    "ExecutionNotFoundError",
    "ExecutionRecord",
    "ExecutionStatusEnum",
    "ExecutorRegistry",
    "FatalError",
    "FunctionExecutor",
    "Node",
    "StepEnvironment",
    "StepExecutor",
    "StepTimeoutError",
    "Suspend",
    "ValidationError",
    "WorkflowCatalog",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowEngineError",
    "WorkflowSettings",
    "create_engine",
    "create_registry",
]
