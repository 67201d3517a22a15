"""Workflow engine: drives executions layer by layer with durable checkpoints."""

import contextvars
import itertools
import json
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..executors.base import StepEnvironment, StepExecutor, Suspend
from ..models.core import (
    AttemptStatus, ExecutionRecord, ExecutionStatusEnum, Node, StateDelta, StepAttempt,
    StepOutput, TriggerContext, WaitKind, WaitRecord, WaitStatus, WorkflowDefinition,
    WorkflowSettings, utcnow
)
from ..storage.store import ExecutionStore
from . import interpolation, planner, validator
from .catalog import WorkflowCatalog
from .context import ExecutionContext
from .error_recovery import RetryPolicy
from .exceptions import (
    EventNotAwaitedError, ExecutionError, FatalError, StateManagementError, StepTimeoutError,
    ValidationError, WorkflowEngineError
)
from .logging import clear_logging_context, get_logger, set_logging_context
from .notifications import LoggingNotificationChannel, NotificationChannel
from .registry import ExecutorRegistry

logger = get_logger(__name__)

CANCELLED_MESSAGE = "Execution cancelled by user"


class StepOutcome:
    """Result of dispatching one node: an output, a suspension, or a failure."""

    def __init__(self, node_id: str, attempt_number: int, output: Any = None,
                 suspend: Optional[Suspend] = None, error: Optional[ExecutionError] = None):
        self.node_id = node_id
        self.attempt_number = attempt_number
        self.output = output
        self.suspend = suspend
        self.error = error

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def suspended(self) -> bool:
        return self.error is None and self.suspend is not None


class WorkflowEngine:
    """Runs workflow executions with retry, suspension and crash recovery.

    Each execution is driven by one thread from the driver pool. The driver
    plans the workflow into layers, fans a layer's nodes out on the step pool
    and records each output in the store before moving on. Only the driver
    writes step outputs; step workers return results.
    """

    def __init__(
        self,
        catalog: WorkflowCatalog,
        store: ExecutionStore,
        registry: Optional[ExecutorRegistry] = None,
        notifier: Optional[NotificationChannel] = None,
        default_settings: Optional[WorkflowSettings] = None,
        max_concurrent_executions: int = 10,
        max_parallel_steps: int = 8,
        sweep_interval: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize the workflow engine.

        Args:
            catalog: Source of workflow definitions
            store: Persistence provider for execution state
            registry: Step executors; defaults to the catalog's registry
            notifier: Channel used by suspend-and-wait steps
            default_settings: Settings used where a workflow leaves a field unset
            max_concurrent_executions: Size of the driver pool
            max_parallel_steps: Size of the step pool shared by all executions
            sweep_interval: Seconds between background timeout sweeps
            clock: Source of naive UTC timestamps
            sleep: Used for retry backoff
        """
        self.catalog = catalog
        self.store = store
        self.registry = registry or catalog.registry
        self.notifier = notifier or LoggingNotificationChannel()
        self.default_settings = default_settings or WorkflowSettings()
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._sleep = sleep

        self._lock = threading.RLock()
        self._active_executions: Dict[str, Future] = {}
        self._driver_tickets: Dict[str, int] = {}
        self._tickets = itertools.count(1)
        self._run_locks: Dict[str, threading.RLock] = {}

        self._driver_pool = ThreadPoolExecutor(max_workers=max_concurrent_executions,
                                               thread_name_prefix="flowengine-driver")
        self._step_pool = ThreadPoolExecutor(max_workers=max_parallel_steps,
                                             thread_name_prefix="flowengine-step")

        self._sweeper_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._shutdown = False

        logger.info(
            f"WorkflowEngine initialized with max_concurrent_executions={max_concurrent_executions}, "
            f"max_parallel_steps={max_parallel_steps}"
        )

    # Public operations

    def start(self, workflow_id: str, payload: Optional[Dict[str, Any]] = None,
              trigger_type: str = "manual") -> str:
        """
        Start a new execution of a registered workflow.

        Args:
            workflow_id: ID of the workflow to run
            payload: Trigger payload, available as ``{{trigger.payload...}}``
            trigger_type: Label stored on the trigger context

        Returns:
            Unique execution ID

        Raises:
            ValidationError: If the workflow is unknown or invalid; no execution is created
        """
        definition = self.catalog.get(workflow_id)
        if definition is None:
            raise ValidationError(f"Workflow '{workflow_id}' not found", workflow_id=workflow_id)

        validator.validate(definition, self.registry)

        execution_id = str(uuid.uuid4())
        trigger = TriggerContext(type=trigger_type, payload=payload or {}, timestamp=self._clock())
        self.store.create_execution(execution_id, workflow_id, trigger)
        self._submit(execution_id)

        logger.info(f"Started execution {execution_id} for workflow {workflow_id}")
        return execution_id

    def get_status(self, execution_id: str) -> ExecutionRecord:
        """
        Get the current record of an execution.

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        return self.store.get_record(execution_id)

    def get_attempts(self, execution_id: str, node_id: Optional[str] = None) -> List[StepAttempt]:
        """Attempt log for an execution, optionally limited to one node."""
        self.store.get_record(execution_id)
        return self.store.list_attempts(execution_id, node_id)

    def get_result(self, execution_id: str) -> Dict[str, Any]:
        """The trigger and recorded step outputs of an execution."""
        state = self.store.load_execution_state(execution_id)
        return state.context.as_lookup()

    def send_event(self, execution_id: str, event_type: str, payload: Optional[Dict[str, Any]] = None,
                   node_id: Optional[str] = None) -> ExecutionRecord:
        """
        Deliver an external event to a suspended node and resume the execution.

        The oldest pending wait on ``event_type`` is resolved; ``node_id``
        targets a specific node when several wait on the same type. The
        node's output becomes ``{"event_type", "payload", "received_at"}``.

        Event delivery takes the execution's run lock, which the driver holds
        while a layer runs. When the waiting node's siblings are still
        executing, this call blocks until that layer has finished and been
        checkpointed, then resolves the wait.

        Raises:
            ExecutionNotFoundError: If the execution does not exist
            EventNotAwaitedError: If no node is waiting on ``event_type``
        """
        now = self._clock()
        resubmit = False
        expired = False

        _ensure_not_finished(self.store.get_record(execution_id), event_type)
        with self._run_lock(execution_id):
            record = self.store.get_record(execution_id)
            _ensure_not_finished(record, event_type)

            candidates = [
                wait for wait in record.waiting_on
                if wait.kind == WaitKind.EVENT and wait.event_type == event_type
                and (node_id is None or wait.node_id == node_id)
            ]
            if not candidates:
                raise EventNotAwaitedError(
                    f"No node in execution {execution_id} is waiting for '{event_type}'",
                    execution_id=execution_id, event_type=event_type
                )

            wait = candidates[0]
            if wait.deadline <= now:
                resubmit = self._expire_wait(record, wait, now)
                expired = True
            else:
                output = {
                    "event_type": event_type,
                    "payload": payload or {},
                    "received_at": now.isoformat(),
                }
                others_waiting = len(record.waiting_on) > 1
                record = self.store.save_execution_state(execution_id, StateDelta(
                    step_output=StepOutput(node_id=wait.node_id, output=output),
                    close_wait_node_id=wait.node_id,
                    close_wait_payload=payload or {},
                    status=None if others_waiting else ExecutionStatusEnum.RUNNING
                ))
                self._close_attempt(execution_id, wait.node_id, wait.attempt_number,
                                    AttemptStatus.SUCCEEDED, now, output=output)
                resubmit = not others_waiting
                logger.info(f"Event '{event_type}' resumed node {wait.node_id} of execution {execution_id}")

        if resubmit:
            self._submit(execution_id)
        if expired:
            raise EventNotAwaitedError(
                f"Wait of node {wait.node_id} for '{event_type}' expired at {wait.deadline.isoformat()}",
                execution_id=execution_id, event_type=event_type
            )
        return record

    def cancel(self, execution_id: str) -> ExecutionRecord:
        """
        Request cancellation of an execution.

        A waiting or queued execution is cancelled at once. A running one is
        cancelled at its next checkpoint; steps already dispatched finish.
        Cancelling a finished execution does nothing.

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        record = self.store.get_record(execution_id)
        if record.status.is_terminal:
            logger.warning(f"Attempted to cancel finished execution {execution_id} ({record.status.value})")
            return record

        try:
            self.store.save_execution_state(execution_id, StateDelta(cancel_requested=True))
        except StateManagementError:
            return self.store.get_record(execution_id)

        if not self.is_execution_active(execution_id):
            self._finalize_cancelled(execution_id)
            self._release_run_lock(execution_id)

        logger.info(f"Cancellation requested for execution {execution_id}")
        return self.store.get_record(execution_id)

    def wait(self, execution_id: str, timeout: Optional[float] = None) -> ExecutionRecord:
        """
        Block until no driver is working on the execution and return its record.

        Returns as soon as the execution is terminal or parked in ``waiting``.

        Raises:
            concurrent.futures.TimeoutError: If ``timeout`` seconds pass first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                future = self._active_executions.get(execution_id)
            if future is None:
                return self.store.get_record(execution_id)
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            future.result(timeout=remaining)

    def resume(self, execution_id: str) -> None:
        """
        Re-drive one execution from its persisted state.

        Raises:
            StateManagementError: If the execution already finished
        """
        record = self.store.get_record(execution_id)
        if record.status.is_terminal:
            raise StateManagementError(
                f"Execution {execution_id} is {record.status.value} and cannot be resumed",
                execution_id=execution_id, operation="resume"
            )
        self._submit(execution_id)

    def recover(self) -> List[str]:
        """Re-drive executions left queued or running by a previous process."""
        recovered = []
        candidates = self.store.list_executions([
            ExecutionStatusEnum.QUEUED, ExecutionStatusEnum.RUNNING, ExecutionStatusEnum.WAITING
        ])
        for record in candidates:
            if record.status == ExecutionStatusEnum.WAITING and record.waiting_on:
                continue
            if self.is_execution_active(record.id):
                continue
            self._submit(record.id)
            recovered.append(record.id)

        if recovered:
            logger.info(f"Recovered {len(recovered)} interrupted executions")
        return recovered

    def sweep_timeouts(self, now: Optional[datetime] = None) -> int:
        """
        Resolve delays and expire event waits whose deadline has passed.

        An expired event wait counts as a timed-out attempt: the node is
        dispatched again while its retry budget lasts, otherwise the
        execution ends ``errored`` with a ``StepTimeoutError``.

        Returns:
            Number of waits handled
        """
        now = now or self._clock()
        handled = 0

        for due in self.store.list_due_waits(now):
            resubmit = False
            with self._run_lock(due.execution_id):
                record = self.store.get_record(due.execution_id)
                if record.status.is_terminal:
                    continue
                wait = next((w for w in record.waiting_on if w.node_id == due.node_id), None)
                if wait is None or wait.deadline > now:
                    continue

                if wait.kind == WaitKind.DELAY:
                    resubmit = self._resolve_delay(record, wait, now)
                else:
                    resubmit = self._expire_wait(record, wait, now)
                handled += 1

            if resubmit:
                self._submit(due.execution_id)

        if handled:
            logger.debug(f"Timeout sweep handled {handled} waits")
        return handled

    def start_sweeper(self, interval: Optional[float] = None) -> None:
        """Run :meth:`sweep_timeouts` periodically on a daemon thread."""
        if self._sweeper_thread and self._sweeper_thread.is_alive():
            return
        interval = interval or self.sweep_interval
        self._stop_event.clear()
        self._sweeper_thread = threading.Thread(
            target=self._sweep_loop, args=(interval,), daemon=True, name="flowengine-sweeper"
        )
        self._sweeper_thread.start()
        logger.info(f"Timeout sweeper started with interval={interval}s")

    def shutdown(self, wait: bool = True) -> None:
        """Stop the sweeper and the worker pools."""
        self._shutdown = True
        self._stop_event.set()
        if self._sweeper_thread and self._sweeper_thread.is_alive():
            self._sweeper_thread.join(timeout=5.0)
            logger.info("Timeout sweeper stopped")

        self._driver_pool.shutdown(wait=wait)
        self._step_pool.shutdown(wait=wait)
        logger.info("WorkflowEngine shutdown completed")

    def get_active_executions(self) -> List[str]:
        with self._lock:
            return list(self._active_executions.keys())

    def is_execution_active(self, execution_id: str) -> bool:
        with self._lock:
            future = self._active_executions.get(execution_id)
            return future is not None and not future.done()

    # Driver

    def _submit(self, execution_id: str) -> None:
        if self._shutdown:
            logger.warning(f"Engine is shut down; execution {execution_id} left for recovery")
            return
        with self._lock:
            ticket = next(self._tickets)
            self._driver_tickets[execution_id] = ticket
            self._active_executions[execution_id] = self._driver_pool.submit(self._drive, execution_id, ticket)

    def _drive(self, execution_id: str, ticket: int) -> None:
        token = set_logging_context(execution_id=execution_id)
        try:
            with self._run_lock(execution_id):
                try:
                    self._run_execution(execution_id)
                except FatalError as e:
                    logger.error(f"Fatal error in execution {execution_id}: {e.message}")
                    self._finalize(execution_id, ExecutionStatusEnum.ERRORED, e.message, type(e).__name__)
                except StateManagementError as e:
                    logger.warning(f"Execution {execution_id} changed state during drive: {e.message}")
                except Exception as e:
                    logger.error(f"Execution {execution_id} failed unexpectedly: {str(e)}")
                    self._finalize(execution_id, ExecutionStatusEnum.ERRORED, str(e), type(e).__name__)
        finally:
            clear_logging_context(token)
            self._cleanup_execution(execution_id, ticket)

    def _run_execution(self, execution_id: str) -> None:
        state = self.store.load_execution_state(execution_id)
        record = state.record

        if record.status.is_terminal:
            logger.debug(f"Execution {execution_id} already {record.status.value}")
            return
        if record.cancel_requested:
            self._finalize_cancelled(execution_id)
            return
        if state.pending_waits:
            if record.status != ExecutionStatusEnum.WAITING:
                self.store.save_execution_state(execution_id, StateDelta(status=ExecutionStatusEnum.WAITING))
            return

        definition = self.catalog.get(record.workflow_id)
        if definition is None:
            raise FatalError(f"Workflow '{record.workflow_id}' no longer exists", execution_id=execution_id)
        try:
            layers = planner.plan(definition)
        except ValidationError as e:
            raise FatalError(f"Workflow '{record.workflow_id}' can no longer be planned: {e.message}",
                             execution_id=execution_id)

        settings = self._effective_settings(definition)
        context = state.context
        set_logging_context(workflow_id=definition.id)

        if record.status != ExecutionStatusEnum.RUNNING:
            self.store.save_execution_state(execution_id, StateDelta(status=ExecutionStatusEnum.RUNNING))

        for layer in layers:
            pending = [node_id for node_id in layer if not context.has_output(node_id)]
            if not pending:
                continue

            if self.store.get_record(execution_id).cancel_requested:
                self._finalize_cancelled(execution_id)
                return

            outcomes = self._run_layer(execution_id, definition, settings, context, pending)

            failures = [outcome for outcome in outcomes if outcome.failed]
            if failures:
                last = failures[-1].error
                logger.error(f"Execution {execution_id} failed at node {failures[-1].node_id}: {last.message}")
                self._finalize(execution_id, ExecutionStatusEnum.ERRORED, last.message, type(last).__name__)
                return

            if any(outcome.suspended for outcome in outcomes):
                if self.store.get_record(execution_id).cancel_requested:
                    self._finalize_cancelled(execution_id)
                    return
                self.store.save_execution_state(execution_id, StateDelta(status=ExecutionStatusEnum.WAITING))
                logger.info(f"Execution {execution_id} is waiting")
                return

        self._finalize(execution_id, ExecutionStatusEnum.COMPLETED)
        logger.info(f"Execution {execution_id} completed")

    def _run_layer(self, execution_id: str, definition: WorkflowDefinition, settings: WorkflowSettings,
                   context: ExecutionContext, node_ids: List[str]) -> List[StepOutcome]:
        """Fan a layer out on the step pool and checkpoint results as they arrive."""
        lookup = context.as_lookup()
        futures = {}
        for node_id in node_ids:
            node = definition.get_node(node_id)
            future = self._step_pool.submit(
                self._run_step, execution_id, definition.id, node, settings, lookup, context.snapshot()
            )
            futures[future] = node_id

        outcomes = []
        for future in as_completed(futures):
            node_id = futures[future]
            try:
                outcome = future.result()
            except Exception as e:
                outcome = StepOutcome(node_id, 0, error=ExecutionError(
                    f"Step {node_id} crashed: {str(e)}", node_id=node_id, execution_id=execution_id
                ))

            if outcome.suspended:
                self._park(execution_id, definition, settings, outcome)
            elif not outcome.failed:
                self.store.save_execution_state(
                    execution_id, StateDelta(step_output=StepOutput(node_id=node_id, output=outcome.output))
                )
                context.record(node_id, outcome.output)
                logger.debug(f"Recorded output of node {node_id}")
            outcomes.append(outcome)

        return outcomes

    def _park(self, execution_id: str, definition: WorkflowDefinition, settings: WorkflowSettings,
              outcome: StepOutcome) -> None:
        suspend = outcome.suspend
        node = definition.get_node(outcome.node_id)
        seconds = suspend.timeout or node.timeout or settings.wait_timeout
        wait = WaitRecord(
            execution_id=execution_id,
            node_id=outcome.node_id,
            kind=suspend.kind,
            event_type=suspend.event_type,
            deadline=self._clock() + timedelta(seconds=seconds),
            attempt_number=outcome.attempt_number
        )
        self.store.save_execution_state(execution_id, StateDelta(open_wait=wait))
        logger.info(
            f"Node {outcome.node_id} suspended ({suspend.kind.value}"
            f"{', ' + suspend.event_type if suspend.event_type else ''}) until {wait.deadline.isoformat()}"
        )

        # The wait is persisted first so a reply to the notification always finds it.
        if suspend.notification is not None:
            try:
                self.notifier.notify(execution_id, outcome.node_id, suspend.event_type, suspend.notification)
            except Exception as e:
                logger.error(f"Notification for node {outcome.node_id} failed: {str(e)}")

    # Steps

    def _run_step(self, execution_id: str, workflow_id: str, node: Node, settings: WorkflowSettings,
                  lookup: Dict[str, Any], context: ExecutionContext) -> StepOutcome:
        """
        Run one node under its retry and timeout policy.

        Returns:
            StepOutcome carrying the output, a suspension, or the last error
        """
        token = set_logging_context(execution_id=execution_id, workflow_id=workflow_id, node_id=node.id)
        try:
            policy = RetryPolicy.for_node(node, settings)
            attempt, interrupted = self._next_attempt(execution_id, node.id)

            if attempt > policy.retry_limit:
                return StepOutcome(node.id, attempt - 1, error=ExecutionError(
                    f"Step {node.id} has no attempts left ({policy.retry_limit} used)",
                    node_id=node.id, execution_id=execution_id
                ))
            if interrupted:
                logger.warning(f"Re-running attempt {attempt} of node {node.id}, interrupted before it finished")
            elif attempt > 1:
                self._sleep(policy.get_delay(attempt - 1))

            try:
                executor = self.registry.get(node.type)
            except WorkflowEngineError as e:
                return StepOutcome(node.id, attempt, error=ExecutionError(
                    e.message, node_id=node.id, execution_id=execution_id
                ))

            parameters = interpolation.resolve(node.parameters, lookup)
            unresolved = interpolation.find_unresolved(node.parameters, lookup)
            timeout = node.timeout or settings.timeout

            while True:
                started_at = self._clock()
                attempt_log = StepAttempt(
                    execution_id=execution_id,
                    node_id=node.id,
                    attempt_number=attempt,
                    status=AttemptStatus.RUNNING,
                    input_snapshot=_json_safe(parameters),
                    unresolved_variables=unresolved,
                    started_at=started_at
                )
                self.store.record_attempt(attempt_log)

                env = StepEnvironment(
                    execution_id=execution_id,
                    workflow_id=workflow_id,
                    node_id=node.id,
                    attempt_number=attempt,
                    notifier=self.notifier,
                    clock=self._clock
                )

                try:
                    result = self._call_executor(executor, node.id, parameters, context, env, timeout)
                    if not isinstance(result, Suspend):
                        result = _json_safe(result)
                except Exception as e:
                    error = e if isinstance(e, ExecutionError) else ExecutionError(
                        f"Step {node.id} failed: {str(e)}", node_id=node.id, execution_id=execution_id,
                        attempt=attempt
                    )
                    status = AttemptStatus.TIMED_OUT if isinstance(error, StepTimeoutError) else AttemptStatus.FAILED
                    self.store.record_attempt(attempt_log.model_copy(update={
                        "status": status, "error": error.message, "finished_at": self._clock()
                    }))

                    if policy.has_attempts_left(attempt):
                        delay = policy.get_delay(attempt)
                        logger.warning(
                            f"Attempt {attempt}/{policy.retry_limit} of node {node.id} failed: {error.message}; "
                            f"retrying in {delay}s"
                        )
                        self._sleep(delay)
                        attempt += 1
                        continue

                    logger.error(f"Node {node.id} failed after {attempt} attempts: {error.message}")
                    return StepOutcome(node.id, attempt, error=error)

                if isinstance(result, Suspend):
                    self.store.record_attempt(attempt_log.model_copy(update={"status": AttemptStatus.SUSPENDED}))
                    return StepOutcome(node.id, attempt, suspend=result)

                self.store.record_attempt(attempt_log.model_copy(update={
                    "status": AttemptStatus.SUCCEEDED, "output": result, "finished_at": self._clock()
                }))
                return StepOutcome(node.id, attempt, output=result)
        finally:
            clear_logging_context(token)

    def _next_attempt(self, execution_id: str, node_id: str) -> Tuple[int, bool]:
        """
        Attempt number for the next dispatch of a node.

        A latest attempt with no ``finished_at`` was cut off by a crash before
        its outcome was logged; its number is reused so it does not consume
        retry budget.

        Returns:
            Tuple of (attempt number, whether it re-runs an interrupted attempt)
        """
        attempts = self.store.list_attempts(execution_id, node_id)
        if not attempts:
            return 1, False
        latest = max(attempts, key=lambda a: a.attempt_number)
        if latest.finished_at is None and latest.status in (AttemptStatus.RUNNING, AttemptStatus.SUSPENDED):
            return latest.attempt_number, True
        return latest.attempt_number + 1, False

    def _call_executor(self, executor: StepExecutor, node_id: str, parameters: Dict[str, Any],
                       context: ExecutionContext, env: StepEnvironment, timeout: Optional[float]) -> Any:
        """
        Call an executor, abandoning the call after ``timeout`` seconds.

        Timed calls run on their own daemon thread. An abandoned call keeps
        running there until it returns and holds no pool worker.

        Raises:
            StepTimeoutError: If the call does not return in time
        """
        if not timeout:
            return executor.execute(node_id, parameters, context, env)

        future: Future = Future()

        def call() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(executor.execute(node_id, parameters, context, env))
            except Exception as e:
                future.set_exception(e)

        thread = threading.Thread(
            target=contextvars.copy_context().run, args=(call,), daemon=True,
            name=f"flowengine-call-{node_id}"
        )
        thread.start()
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError:
            logger.warning(f"Abandoning call of node {node_id} after {timeout}s; its thread keeps running")
            raise StepTimeoutError(
                f"Step {node_id} timed out after {timeout} seconds",
                timeout=timeout, node_id=node_id, execution_id=env.execution_id, attempt=env.attempt_number
            )

    # Waits

    def _resolve_delay(self, record: ExecutionRecord, wait: WaitRecord, now: datetime) -> bool:
        output = {"scheduled_for": wait.deadline.isoformat(), "resumed_at": now.isoformat()}
        others_waiting = len(record.waiting_on) > 1
        self.store.save_execution_state(record.id, StateDelta(
            step_output=StepOutput(node_id=wait.node_id, output=output),
            close_wait_node_id=wait.node_id,
            close_wait_payload=output,
            status=None if others_waiting else ExecutionStatusEnum.RUNNING
        ))
        self._close_attempt(record.id, wait.node_id, wait.attempt_number, AttemptStatus.SUCCEEDED, now,
                            output=output)
        logger.info(f"Delay of node {wait.node_id} in execution {record.id} elapsed")
        return not others_waiting

    def _expire_wait(self, record: ExecutionRecord, wait: WaitRecord, now: datetime) -> bool:
        """Expire an event wait; returns True when the execution should be re-driven."""
        message = (f"Node {wait.node_id} timed out waiting for '{wait.event_type}' "
                   f"(deadline {wait.deadline.isoformat()})")
        self._close_attempt(record.id, wait.node_id, wait.attempt_number, AttemptStatus.TIMED_OUT, now,
                            error=message)

        definition = self.catalog.get(record.workflow_id)
        node = definition.get_node(wait.node_id) if definition else None
        if node is None:
            self.store.save_execution_state(record.id, StateDelta(
                close_wait_node_id=wait.node_id, close_wait_status=WaitStatus.EXPIRED,
                status=ExecutionStatusEnum.ERRORED, error_type=FatalError.__name__,
                error=f"Workflow '{record.workflow_id}' no longer defines node {wait.node_id}"
            ))
            return False

        policy = RetryPolicy.for_node(node, self._effective_settings(definition))
        others_waiting = len(record.waiting_on) > 1
        if policy.has_attempts_left(wait.attempt_number):
            logger.warning(f"{message}; retrying (attempt {wait.attempt_number}/{policy.retry_limit})")
            self.store.save_execution_state(record.id, StateDelta(
                close_wait_node_id=wait.node_id, close_wait_status=WaitStatus.EXPIRED,
                status=None if others_waiting else ExecutionStatusEnum.RUNNING
            ))
            return not others_waiting

        logger.error(message)
        self.store.save_execution_state(record.id, StateDelta(
            close_wait_node_id=wait.node_id, close_wait_status=WaitStatus.EXPIRED,
            status=ExecutionStatusEnum.ERRORED, error=message, error_type=StepTimeoutError.__name__
        ))
        return False

    def _close_attempt(self, execution_id: str, node_id: str, attempt_number: int, status: AttemptStatus,
                       now: datetime, output: Any = None, error: Optional[str] = None) -> None:
        existing = next(
            (a for a in self.store.list_attempts(execution_id, node_id) if a.attempt_number == attempt_number),
            None
        )
        if existing is None:
            existing = StepAttempt(execution_id=execution_id, node_id=node_id, attempt_number=attempt_number,
                                   status=status, started_at=now)
        self.store.record_attempt(existing.model_copy(update={
            "status": status, "output": output, "error": error, "finished_at": now
        }))

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop_event.wait(interval):
            try:
                self.sweep_timeouts()
            except Exception as e:
                logger.error(f"Timeout sweep failed: {str(e)}")

    # Helpers

    def _effective_settings(self, definition: WorkflowDefinition) -> WorkflowSettings:
        """Workflow settings with unset fields taken from the engine defaults."""
        overrides = {name: getattr(definition.settings, name) for name in definition.settings.model_fields_set}
        return self.default_settings.model_copy(update=overrides)

    def _finalize(self, execution_id: str, status: ExecutionStatusEnum, error: Optional[str] = None,
                  error_type: Optional[str] = None) -> None:
        try:
            self.store.save_execution_state(execution_id, StateDelta(status=status, error=error,
                                                                     error_type=error_type))
        except StateManagementError as e:
            logger.warning(f"Could not finalize execution {execution_id} as {status.value}: {e.message}")

    def _finalize_cancelled(self, execution_id: str) -> None:
        with self._run_lock(execution_id):
            record = self.store.get_record(execution_id)
            if record.status.is_terminal:
                return
            now = self._clock()
            for wait in record.waiting_on:
                self._close_attempt(execution_id, wait.node_id, wait.attempt_number, AttemptStatus.CANCELLED, now)
            self._finalize(execution_id, ExecutionStatusEnum.CANCELLED, CANCELLED_MESSAGE)
            logger.info(f"Cancelled execution {execution_id}")

    def _cleanup_execution(self, execution_id: str, ticket: int) -> None:
        with self._lock:
            if self._driver_tickets.get(execution_id) != ticket:
                return
            self._driver_tickets.pop(execution_id, None)
            self._active_executions.pop(execution_id, None)

        # A cancel that arrived after the driver's last check is applied here.
        try:
            record = self.store.get_record(execution_id)
            if record.cancel_requested and not record.status.is_terminal:
                self._finalize_cancelled(execution_id)
            self._release_run_lock(execution_id)
        except WorkflowEngineError as e:
            logger.error(f"Failed to clean up execution {execution_id}: {e.message}")

    def _release_run_lock(self, execution_id: str) -> None:
        """Forget the run lock of a finished execution that no driver is working on."""
        with self._lock:
            if execution_id in self._active_executions:
                return
            if not self.store.get_record(execution_id).status.is_terminal:
                return
            self._run_locks.pop(execution_id, None)

    def _run_lock(self, execution_id: str) -> threading.RLock:
        with self._lock:
            lock = self._run_locks.get(execution_id)
            if lock is None:
                lock = self._run_locks[execution_id] = threading.RLock()
            return lock


def _json_safe(value: Any) -> Any:
    """Normalise a value to what the store will hand back after a round trip."""
    try:
        return json.loads(json.dumps(value, default=str))
    except (TypeError, ValueError) as e:
        raise ExecutionError(f"Value is not JSON serialisable: {str(e)}")


def _ensure_not_finished(record: ExecutionRecord, event_type: str) -> None:
    if record.status.is_terminal:
        raise EventNotAwaitedError(
            f"Execution {record.id} is {record.status.value} and awaits no events",
            execution_id=record.id, event_type=event_type
        )
