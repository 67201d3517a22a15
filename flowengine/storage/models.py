"""SQLAlchemy database models for the workflow engine."""

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import relationship

from ..models.core import utcnow
from .database import Base


class WorkflowModel(Base):
    """Database model for validated workflow definitions."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, default="")
    definition = Column(JSON, nullable=False)  # Complete WorkflowDefinition dump
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ExecutionModel(Base):
    """Database model for workflow executions."""
    __tablename__ = "executions"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, index=True)  # queued, running, waiting, completed, errored, cancelled
    trigger = Column(JSON, nullable=False)
    error_message = Column(Text)
    error_type = Column(String)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    started_at = Column(DateTime)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime)

    outputs = relationship("StepOutputModel", back_populates="execution", cascade="all, delete-orphan")
    attempts = relationship("StepAttemptModel", back_populates="execution", cascade="all, delete-orphan")
    waits = relationship("WaitRecordModel", back_populates="execution", cascade="all, delete-orphan")


class StepOutputModel(Base):
    """Write-ahead log of recorded step outputs; one row per (execution, node)."""
    __tablename__ = "step_outputs"
    __table_args__ = (UniqueConstraint("execution_id", "node_id", name="uq_step_outputs_execution_node"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    execution_id = Column(String, ForeignKey("executions.id"), nullable=False)
    node_id = Column(String, nullable=False)
    output = Column(JSON)
    recorded_at = Column(DateTime, default=utcnow)

    execution = relationship("ExecutionModel", back_populates="outputs")


class StepAttemptModel(Base):
    """Diagnostic log of executor calls."""
    __tablename__ = "step_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    execution_id = Column(String, ForeignKey("executions.id"), nullable=False, index=True)
    node_id = Column(String, nullable=False)
    attempt_number = Column(Integer, nullable=False)
    status = Column(String, nullable=False)
    input_snapshot = Column(JSON)
    output = Column(JSON)
    error = Column(Text)
    unresolved_variables = Column(JSON)
    started_at = Column(DateTime, default=utcnow)
    finished_at = Column(DateTime)

    execution = relationship("ExecutionModel", back_populates="attempts")


class WaitRecordModel(Base):
    """Suspended nodes waiting for an event or a deadline."""
    __tablename__ = "wait_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    execution_id = Column(String, ForeignKey("executions.id"), nullable=False, index=True)
    node_id = Column(String, nullable=False)
    kind = Column(String, nullable=False)  # event, delay
    event_type = Column(String)
    deadline = Column(DateTime, nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False, default=1)
    status = Column(String, nullable=False, index=True)  # pending, resolved, expired, cancelled
    payload = Column(JSON)
    created_at = Column(DateTime, default=utcnow)
    closed_at = Column(DateTime)

    execution = relationship("ExecutionModel", back_populates="waits")
