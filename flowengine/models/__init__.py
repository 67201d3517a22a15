"""Data models for the workflow engine."""

from .core import (
    AttemptStatus,
    BackoffStrategy,
    Connection,
    ExecutionRecord,
    ExecutionStatusEnum,
    Node,
    StateDelta,
    StepAttempt,
    StepOutput,
    TriggerContext,
    ValidationResult,
    WaitKind,
    WaitRecord,
    WaitStatus,
    WorkflowDefinition,
    WorkflowSettings,
    WorkflowSummary,
)

__all__ = [
    "AttemptStatus",
    "BackoffStrategy",
    "Connection",
    "ExecutionRecord",
    "ExecutionStatusEnum",
    "Node",
    "StateDelta",
    "StepAttempt",
    "StepOutput",
    "TriggerContext",
    "ValidationResult",
    "WaitKind",
    "WaitRecord",
    "WaitStatus",
    "WorkflowDefinition",
    "WorkflowSettings",
    "WorkflowSummary",
]
