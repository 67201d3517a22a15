"""Durable execution state: records, write-ahead step outputs, waits and attempts."""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.context import ExecutionContext
from ..core.error_recovery import RetryConfig, with_retry
from ..core.exceptions import (
    ExecutionNotFoundError, FatalError, StateManagementError, StorageError
)
from ..core.logging import get_logger
from ..models.core import (
    AttemptStatus, ExecutionRecord, ExecutionStatusEnum, StateDelta, StepAttempt,
    TriggerContext, WaitKind, WaitRecord, WaitStatus, utcnow
)
from .models import ExecutionModel, StepAttemptModel, StepOutputModel, WaitRecordModel

logger = get_logger(__name__)

STORAGE_RETRY = RetryConfig(max_attempts=3, retryable_exceptions=[StorageError])


class ExecutionState:
    """Everything needed to resume an execution, rebuilt from storage."""

    def __init__(self, record: ExecutionRecord, context: ExecutionContext, pending_waits: List[WaitRecord]):
        self.record = record
        self.context = context
        self.pending_waits = pending_waits

    @property
    def completed_node_ids(self) -> set:
        return set(self.record.completed_node_ids)

    @property
    def waiting_node_ids(self) -> set:
        return {wait.node_id for wait in self.pending_waits}


class ExecutionStore(ABC):
    """Persistence provider used for durability checkpoints."""

    @abstractmethod
    def create_execution(self, execution_id: str, workflow_id: str, trigger: TriggerContext) -> ExecutionRecord:
        """Create a queued execution record."""

    @abstractmethod
    def load_execution_state(self, execution_id: str) -> ExecutionState:
        """Replay persisted state for ``execution_id``."""

    @abstractmethod
    def save_execution_state(self, execution_id: str, delta: StateDelta) -> ExecutionRecord:
        """Apply ``delta`` atomically and return the updated record."""

    @abstractmethod
    def get_record(self, execution_id: str) -> ExecutionRecord:
        """Current record for ``execution_id``."""

    @abstractmethod
    def record_attempt(self, attempt: StepAttempt) -> None:
        """Insert or update the attempt log entry for (execution, node, attempt)."""

    @abstractmethod
    def list_attempts(self, execution_id: str, node_id: Optional[str] = None) -> List[StepAttempt]:
        """Attempt log in chronological order."""

    @abstractmethod
    def last_attempt_number(self, execution_id: str, node_id: str) -> int:
        """Highest attempt number logged for a node, 0 when never attempted."""

    @abstractmethod
    def list_due_waits(self, now: datetime) -> List[WaitRecord]:
        """Pending waits whose deadline is at or before ``now``."""

    @abstractmethod
    def list_executions(self, statuses: Optional[Sequence[ExecutionStatusEnum]] = None) -> List[ExecutionRecord]:
        """Execution records, optionally filtered by status."""


class SQLAlchemyExecutionStore(ExecutionStore):
    """:class:`ExecutionStore` backed by a SQLAlchemy session factory.

    All access is serialised through one lock so the store can share a single
    SQLite connection between threads. Pass the same ``lock`` to every
    component that uses the same session factory.
    """

    def __init__(self, session_factory: sessionmaker, lock: Optional[threading.RLock] = None):
        self._session_factory = session_factory
        self._lock = lock or threading.RLock()
        logger.info("SQLAlchemyExecutionStore initialized")

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        with self._lock:
            db = self._session_factory()
            try:
                yield db
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise StateManagementError(f"Integrity violation during {operation}: {e.orig}",
                                           operation=operation)
            except SQLAlchemyError as e:
                db.rollback()
                raise StorageError(f"Failed to {operation}: {str(e)}", operation=operation)
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    @with_retry(STORAGE_RETRY)
    def create_execution(self, execution_id: str, workflow_id: str, trigger: TriggerContext) -> ExecutionRecord:
        with self._session("create execution") as db:
            run = ExecutionModel(
                id=execution_id,
                workflow_id=workflow_id,
                status=ExecutionStatusEnum.QUEUED.value,
                trigger=trigger.model_dump(mode="json"),
                cancel_requested=False,
                created_at=utcnow()
            )
            db.add(run)
            db.flush()
            record = self._to_record(db, run)

        logger.info(f"Created execution {execution_id} for workflow {workflow_id}")
        return record

    def load_execution_state(self, execution_id: str) -> ExecutionState:
        with self._session("load execution state") as db:
            run = self._get_run(db, execution_id)
            try:
                trigger = TriggerContext.model_validate(run.trigger)
                record = self._to_record(db, run)
            except (PydanticValidationError, ValueError, TypeError) as e:
                raise FatalError(f"Corrupt persisted state for execution {execution_id}: {e}",
                                 execution_id=execution_id)

            steps: Dict[str, Any] = {}
            for row in self._output_rows(db, execution_id):
                if row.node_id in steps:
                    raise FatalError(
                        f"Corrupt persisted state for execution {execution_id}: "
                        f"node {row.node_id} recorded twice",
                        execution_id=execution_id
                    )
                steps[row.node_id] = row.output

        context = ExecutionContext(trigger, steps, execution_id=execution_id)
        logger.debug(f"Loaded execution {execution_id} with {len(steps)} recorded steps")
        return ExecutionState(record, context, list(record.waiting_on))

    @with_retry(STORAGE_RETRY)
    def save_execution_state(self, execution_id: str, delta: StateDelta) -> ExecutionRecord:
        now = utcnow()
        with self._session("save execution state") as db:
            run = self._get_run(db, execution_id)
            current = self._status_of(run)

            if current.is_terminal:
                raise StateManagementError(
                    f"Execution {execution_id} is {current.value} and can no longer change",
                    execution_id=execution_id,
                    operation="save_execution_state"
                )

            if delta.step_output is not None:
                node_id = delta.step_output.node_id
                exists = (
                    db.query(StepOutputModel.id)
                    .filter(StepOutputModel.execution_id == execution_id,
                            StepOutputModel.node_id == node_id)
                    .first()
                )
                if exists:
                    raise StateManagementError(
                        f"Output for node {node_id} is already recorded",
                        execution_id=execution_id,
                        operation="record_step_output"
                    )
                db.add(StepOutputModel(
                    execution_id=execution_id,
                    node_id=node_id,
                    output=delta.step_output.output,
                    recorded_at=now
                ))

            if delta.close_wait_node_id is not None:
                wait = (
                    db.query(WaitRecordModel)
                    .filter(WaitRecordModel.execution_id == execution_id,
                            WaitRecordModel.node_id == delta.close_wait_node_id,
                            WaitRecordModel.status == WaitStatus.PENDING.value)
                    .first()
                )
                if wait is None:
                    raise StateManagementError(
                        f"Node {delta.close_wait_node_id} has no pending wait",
                        execution_id=execution_id,
                        operation="close_wait"
                    )
                wait.status = delta.close_wait_status.value
                wait.payload = delta.close_wait_payload
                wait.closed_at = now

            if delta.open_wait is not None:
                wait = delta.open_wait
                db.add(WaitRecordModel(
                    execution_id=execution_id,
                    node_id=wait.node_id,
                    kind=wait.kind.value,
                    event_type=wait.event_type,
                    deadline=wait.deadline,
                    attempt_number=wait.attempt_number,
                    status=WaitStatus.PENDING.value,
                    created_at=now
                ))

            if delta.cancel_requested is not None:
                run.cancel_requested = delta.cancel_requested

            if delta.error is not None:
                run.error_message = delta.error
            if delta.error_type is not None:
                run.error_type = delta.error_type

            if delta.status is not None:
                run.status = delta.status.value
                if delta.status == ExecutionStatusEnum.RUNNING and run.started_at is None:
                    run.started_at = now
                if delta.status.is_terminal:
                    run.completed_at = now
                    self._cancel_pending_waits(db, execution_id, now)

            run.updated_at = now
            db.flush()
            record = self._to_record(db, run)

        return record

    def get_record(self, execution_id: str) -> ExecutionRecord:
        with self._session("get execution record") as db:
            run = self._get_run(db, execution_id)
            try:
                return self._to_record(db, run)
            except (PydanticValidationError, ValueError) as e:
                raise FatalError(f"Corrupt persisted state for execution {execution_id}: {e}",
                                 execution_id=execution_id)

    @with_retry(STORAGE_RETRY)
    def record_attempt(self, attempt: StepAttempt) -> None:
        with self._session("record step attempt") as db:
            row = (
                db.query(StepAttemptModel)
                .filter(StepAttemptModel.execution_id == attempt.execution_id,
                        StepAttemptModel.node_id == attempt.node_id,
                        StepAttemptModel.attempt_number == attempt.attempt_number)
                .first()
            )
            if row is None:
                row = StepAttemptModel(
                    execution_id=attempt.execution_id,
                    node_id=attempt.node_id,
                    attempt_number=attempt.attempt_number
                )
                db.add(row)
            row.status = attempt.status.value
            row.input_snapshot = attempt.input_snapshot
            row.output = attempt.output
            row.error = attempt.error
            row.unresolved_variables = list(attempt.unresolved_variables)
            row.started_at = attempt.started_at
            row.finished_at = attempt.finished_at

    def list_attempts(self, execution_id: str, node_id: Optional[str] = None) -> List[StepAttempt]:
        with self._session("list step attempts") as db:
            query = db.query(StepAttemptModel).filter(StepAttemptModel.execution_id == execution_id)
            if node_id is not None:
                query = query.filter(StepAttemptModel.node_id == node_id)
            rows = query.order_by(StepAttemptModel.id).all()
            return [
                StepAttempt(
                    execution_id=row.execution_id,
                    node_id=row.node_id,
                    attempt_number=row.attempt_number,
                    status=AttemptStatus(row.status),
                    input_snapshot=row.input_snapshot,
                    output=row.output,
                    error=row.error,
                    unresolved_variables=row.unresolved_variables or [],
                    started_at=row.started_at,
                    finished_at=row.finished_at
                )
                for row in rows
            ]

    def last_attempt_number(self, execution_id: str, node_id: str) -> int:
        with self._session("read attempt count") as db:
            row = (
                db.query(StepAttemptModel.attempt_number)
                .filter(StepAttemptModel.execution_id == execution_id,
                        StepAttemptModel.node_id == node_id)
                .order_by(StepAttemptModel.attempt_number.desc())
                .first()
            )
            return row[0] if row else 0

    def list_due_waits(self, now: datetime) -> List[WaitRecord]:
        with self._session("list due waits") as db:
            rows = (
                db.query(WaitRecordModel)
                .filter(WaitRecordModel.status == WaitStatus.PENDING.value,
                        WaitRecordModel.deadline <= now)
                .order_by(WaitRecordModel.deadline)
                .all()
            )
            return [self._to_wait(row) for row in rows]

    def list_executions(self, statuses: Optional[Sequence[ExecutionStatusEnum]] = None) -> List[ExecutionRecord]:
        with self._session("list executions") as db:
            query = db.query(ExecutionModel)
            if statuses:
                query = query.filter(ExecutionModel.status.in_([status.value for status in statuses]))
            return [self._to_record(db, run) for run in query.order_by(ExecutionModel.created_at).all()]

    def _get_run(self, db: Session, execution_id: str) -> ExecutionModel:
        run = db.query(ExecutionModel).filter(ExecutionModel.id == execution_id).first()
        if run is None:
            raise ExecutionNotFoundError(execution_id)
        return run

    def _status_of(self, run: ExecutionModel) -> ExecutionStatusEnum:
        try:
            return ExecutionStatusEnum(run.status)
        except ValueError:
            raise FatalError(f"Corrupt persisted state: unknown status '{run.status}'", execution_id=run.id)

    def _output_rows(self, db: Session, execution_id: str) -> List[StepOutputModel]:
        return (
            db.query(StepOutputModel)
            .filter(StepOutputModel.execution_id == execution_id)
            .order_by(StepOutputModel.id)
            .all()
        )

    def _pending_wait_rows(self, db: Session, execution_id: str) -> List[WaitRecordModel]:
        return (
            db.query(WaitRecordModel)
            .filter(WaitRecordModel.execution_id == execution_id,
                    WaitRecordModel.status == WaitStatus.PENDING.value)
            .order_by(WaitRecordModel.id)
            .all()
        )

    def _cancel_pending_waits(self, db: Session, execution_id: str, now: datetime) -> None:
        for wait in self._pending_wait_rows(db, execution_id):
            wait.status = WaitStatus.CANCELLED.value
            wait.closed_at = now

    def _to_wait(self, row: WaitRecordModel) -> WaitRecord:
        return WaitRecord(
            execution_id=row.execution_id,
            node_id=row.node_id,
            kind=WaitKind(row.kind),
            event_type=row.event_type,
            deadline=row.deadline,
            attempt_number=row.attempt_number,
            status=WaitStatus(row.status),
            payload=row.payload,
            created_at=row.created_at
        )

    def _to_record(self, db: Session, run: ExecutionModel) -> ExecutionRecord:
        return ExecutionRecord(
            id=run.id,
            workflow_id=run.workflow_id,
            status=self._status_of(run),
            completed_node_ids=[row.node_id for row in self._output_rows(db, run.id)],
            error=run.error_message,
            error_type=run.error_type,
            waiting_on=[self._to_wait(row) for row in self._pending_wait_rows(db, run.id)],
            cancel_requested=bool(run.cancel_requested),
            created_at=run.created_at,
            started_at=run.started_at,
            updated_at=run.updated_at,
            completed_at=run.completed_at
        )
