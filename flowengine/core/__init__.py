"""Core workflow engine components."""

from .exceptions import (
    ConfigurationError,
    CycleError,
    EventNotAwaitedError,
    ExecutionError,
    ExecutionNotFoundError,
    ExecutorRegistryError,
    FatalError,
    StateManagementError,
    StepTimeoutError,
    StorageError,
    ValidationError,
    WorkflowEngineError,
)
from .logging import get_logger, setup_logging

__all__ = [
    "ConfigurationError",
    "CycleError",
    "EventNotAwaitedError",
    "ExecutionError",
    "ExecutionNotFoundError",
    "ExecutorRegistryError",
    "FatalError",
    "StateManagementError",
    "StepTimeoutError",
    "StorageError",
    "ValidationError",
    "WorkflowEngineError",
    "get_logger",
    "setup_logging",
]
