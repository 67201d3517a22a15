"""Database models and storage layer."""

from .database import Base, create_database_engine, create_session_factory, create_tables, drop_tables
from .models import ExecutionModel, StepAttemptModel, StepOutputModel, WaitRecordModel, WorkflowModel
from .store import ExecutionState, ExecutionStore, SQLAlchemyExecutionStore

__all__ = [
    "Base",
    "create_database_engine",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "ExecutionModel",
    "StepAttemptModel",
    "StepOutputModel",
    "WaitRecordModel",
    "WorkflowModel",
    "ExecutionState",
    "ExecutionStore",
    "SQLAlchemyExecutionStore",
]
