"""Custom exceptions for the workflow engine with detailed error information."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    STORAGE = "storage"
    CONFIGURATION = "configuration"
    STATE = "state"


class WorkflowEngineError(Exception):
    """Base exception for all workflow engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and persistence."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class ValidationError(WorkflowEngineError):
    """Raised when a workflow definition fails load-time validation."""

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.validation_errors = validation_errors or [message]
        if workflow_id:
            self.add_context(workflow_id=workflow_id)
        self.add_details(validation_errors=self.validation_errors)


class CycleError(ValidationError):
    """Raised when the connection graph contains a cycle."""

    def __init__(self, message: str, node_id: str, **kwargs):
        super().__init__(message, **kwargs)
        self.node_id = node_id
        self.add_details(node_id=node_id)


class ExecutionError(WorkflowEngineError):
    """Raised by a step executor; retried according to the step's policy."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        attempt: Optional[int] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(
            message,
            category=ErrorCategory.EXECUTION,
            recoverable=True,
            **kwargs
        )
        self.node_id = node_id
        if node_id:
            self.add_context(node_id=node_id)
        if execution_id:
            self.add_context(execution_id=execution_id)
        if attempt:
            self.add_details(attempt=attempt)


class StepTimeoutError(ExecutionError):
    """Raised when a step attempt or a suspend-and-wait exceeds its deadline."""

    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        if timeout is not None:
            self.add_details(timeout=timeout)


class FatalError(WorkflowEngineError):
    """Execution-level failure that is never retried."""

    def __init__(self, message: str, execution_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.STATE,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)


class StateManagementError(WorkflowEngineError):
    """Raised when an execution state transition or context write is illegal."""

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STATE,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)
        if operation:
            self.add_context(operation=operation)


class StorageError(WorkflowEngineError):
    """Raised when storage operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STORAGE,
            recoverable=True,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)
        if table:
            self.add_context(table=table)


class ExecutorRegistryError(WorkflowEngineError):
    """Raised when executor registry operations fail."""

    def __init__(
        self,
        message: str,
        step_type: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if step_type:
            self.add_context(step_type=step_type)
        if operation:
            self.add_context(operation=operation)


class ConfigurationError(WorkflowEngineError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


class ExecutionNotFoundError(WorkflowEngineError):
    """Raised when an execution id is unknown to the store."""

    def __init__(self, execution_id: str, **kwargs):
        super().__init__(
            f"Execution {execution_id} not found",
            category=ErrorCategory.STATE,
            **kwargs
        )
        self.add_context(execution_id=execution_id)


class EventNotAwaitedError(WorkflowEngineError):
    """Raised when an event is delivered to an execution with no matching wait."""

    def __init__(self, message: str, execution_id: Optional[str] = None,
                 event_type: Optional[str] = None, **kwargs):
        super().__init__(message, category=ErrorCategory.STATE, **kwargs)
        if execution_id:
            self.add_context(execution_id=execution_id)
        if event_type:
            self.add_context(event_type=event_type)
