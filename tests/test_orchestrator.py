"""Tests for the workflow engine: lifecycle, retries, suspension and recovery."""

import time
from datetime import datetime, timedelta

import pytest

from flowengine.core.exceptions import (
    CycleError, EventNotAwaitedError, ExecutionNotFoundError, StateManagementError, ValidationError
)
from flowengine.core.orchestrator import WorkflowEngine
from flowengine.models.core import (
    AttemptStatus, ExecutionStatusEnum, StateDelta, StepAttempt, StepOutput, TriggerContext, WaitKind,
    WorkflowSettings, utcnow
)
from flowengine.storage.models import WorkflowModel

from conftest import build_workflow

WAIT_TIMEOUT = 10


def trigger_node(node_id="trigger"):
    return {"id": node_id, "type": "manual-trigger"}


def approval_node(node_id="approval", **parameters):
    params = {"message": "Ship it?", "approvers": ["ops@example.com"]}
    params.update(parameters)
    return {"id": node_id, "type": "approval", "parameters": params}


def later(seconds=5):
    return utcnow() + timedelta(seconds=seconds)


@pytest.fixture
def linear_workflow(catalog):
    catalog.register(build_workflow(
        "linear",
        [trigger_node(), {"id": "a", "type": "record"}, {"id": "b", "type": "record"}],
        [("trigger", "a"), ("a", "b")]
    ))
    return "linear"


@pytest.fixture
def approval_workflow(catalog):
    catalog.register(build_workflow(
        "approval-flow",
        [trigger_node(), approval_node(), {"id": "action", "type": "record"}],
        [("trigger", "approval"), ("approval", "action")]
    ))
    return "approval-flow"


def run(engine, workflow_id, payload=None):
    execution_id = engine.start(workflow_id, payload)
    return execution_id, engine.wait(execution_id, timeout=WAIT_TIMEOUT)


class TestExecutionLifecycle:
    """Test cases for starting and completing executions."""

    def test_linear_workflow_completes(self, engine, recorder, linear_workflow):
        execution_id, record = run(engine, linear_workflow, {"order": 1})

        assert record.status == ExecutionStatusEnum.COMPLETED
        assert record.started_at is not None
        assert record.completed_at is not None
        assert record.error is None
        assert record.completed_node_ids == ["trigger", "a", "b"]
        assert recorder.called_nodes() == ["a", "b"]

        result = engine.get_result(execution_id)
        assert result["trigger"]["payload"] == {"order": 1}
        assert result["steps"]["trigger"]["data"] == {"order": 1}
        assert result["steps"]["b"] == {"node": "b"}

    def test_successor_sees_predecessor_output(self, engine, recorder, linear_workflow):
        run(engine, linear_workflow)

        assert recorder.calls_for("a")[0]["visible_steps"] == ["trigger"]
        assert recorder.calls_for("b")[0]["visible_steps"] == ["a", "trigger"]

    def test_unknown_workflow_creates_no_record(self, engine, store):
        with pytest.raises(ValidationError):
            engine.start("does-not-exist")

        assert store.list_executions() == []

    def test_cyclic_definition_creates_no_record(self, engine, store, session_factory):
        """A cyclic definition that bypassed the catalog is still rejected at start."""
        definition = build_workflow(
            "cyclic",
            [trigger_node(), {"id": "a", "type": "record"}, {"id": "b", "type": "record"}],
            [("trigger", "a"), ("a", "b"), ("b", "a")]
        )
        db = session_factory()
        db.add(WorkflowModel(id="cyclic", name="cyclic",
                             definition=definition.model_dump(mode="json", by_alias=True)))
        db.commit()
        db.close()

        with pytest.raises(CycleError):
            engine.start("cyclic")

        assert store.list_executions() == []

    def test_unknown_execution(self, engine):
        with pytest.raises(ExecutionNotFoundError):
            engine.get_status("missing")
        with pytest.raises(ExecutionNotFoundError):
            engine.cancel("missing")

    def test_resume_finished_execution_rejected(self, engine, linear_workflow):
        execution_id, _ = run(engine, linear_workflow)

        with pytest.raises(StateManagementError):
            engine.resume(execution_id)

    def test_interpolated_parameters(self, engine, catalog):
        catalog.register(build_workflow(
            "templated",
            [
                trigger_node(),
                {"id": "greet", "type": "set", "parameters": {"values": {
                    "greeting": "Hi {{trigger.payload.name}}",
                    "count": "{{trigger.payload.count}}",
                    "missing": "{{steps.ghost.value}}",
                }}},
            ],
            [("trigger", "greet")]
        ))

        execution_id, record = run(engine, "templated", {"name": "Ada", "count": 42})

        assert record.status == ExecutionStatusEnum.COMPLETED
        assert engine.get_result(execution_id)["steps"]["greet"] == {
            "greeting": "Hi Ada",
            "count": "42",
            "missing": "{{steps.ghost.value}}",
        }
        attempt = engine.get_attempts(execution_id, "greet")[0]
        assert attempt.unresolved_variables == ["steps.ghost.value"]
        assert attempt.input_snapshot["greeting"] == "Hi Ada"


class TestParallelLayers:
    """Test cases for fan-out and failure inside a layer."""

    def test_fan_out_siblings_are_isolated(self, engine, recorder, catalog):
        catalog.register(build_workflow(
            "fan-out",
            [
                trigger_node(),
                {"id": "http", "type": "record"},
                {"id": "agent", "type": "record", "parameters": {"sleep": 0.05}},
                {"id": "notify", "type": "record", "parameters": {"sleep": 0.05}},
            ],
            [("trigger", "http"), ("http", "agent"), ("http", "notify")]
        ))

        execution_id, record = run(engine, "fan-out")

        assert record.status == ExecutionStatusEnum.COMPLETED
        steps = engine.get_result(execution_id)["steps"]
        assert {"agent", "notify"} <= set(steps)
        assert recorder.calls_for("agent")[0]["visible_steps"] == ["http", "trigger"]
        assert recorder.calls_for("notify")[0]["visible_steps"] == ["http", "trigger"]

    def test_failed_sibling_keeps_other_outputs(self, engine, recorder, catalog):
        catalog.register(build_workflow(
            "partial",
            [
                trigger_node(),
                {"id": "good", "type": "record"},
                {"id": "bad", "type": "flaky"},
                {"id": "after", "type": "record"},
            ],
            [("trigger", "good"), ("trigger", "bad"), ("good", "after"), ("bad", "after")]
        ))

        _, record = run(engine, "partial")

        assert record.status == ExecutionStatusEnum.ERRORED
        assert record.error == "boom #1"
        assert record.error_type == "ExecutionError"
        assert "good" in record.completed_node_ids
        assert "bad" not in record.completed_node_ids
        assert "after" not in recorder.called_nodes()


class TestRetries:
    """Test cases for step retry and backoff."""

    def test_retry_exhaustion(self, engine, flaky, catalog):
        catalog.register(build_workflow(
            "exhaust",
            [trigger_node(), {"id": "f", "type": "flaky", "retryLimit": 2}],
            [("trigger", "f")]
        ))

        execution_id, record = run(engine, "exhaust")

        assert record.status == ExecutionStatusEnum.ERRORED
        assert record.error == "boom #2"
        assert flaky.attempts["f"] == 2
        attempts = engine.get_attempts(execution_id, "f")
        assert [a.attempt_number for a in attempts] == [1, 2]
        assert all(a.status == AttemptStatus.FAILED for a in attempts)

    def test_retry_then_succeed(self, engine, flaky, catalog):
        catalog.register(build_workflow(
            "recover-step",
            [trigger_node(), {"id": "f", "type": "flaky", "retryLimit": 3, "parameters": {"fail_times": 2}}],
            [("trigger", "f")]
        ))

        execution_id, record = run(engine, "recover-step")

        assert record.status == ExecutionStatusEnum.COMPLETED
        assert engine.get_result(execution_id)["steps"]["f"] == {"succeeded_on": 3}
        statuses = [a.status for a in engine.get_attempts(execution_id, "f")]
        assert statuses == [AttemptStatus.FAILED, AttemptStatus.FAILED, AttemptStatus.SUCCEEDED]

    def test_default_is_single_attempt(self, engine, flaky, catalog):
        catalog.register(build_workflow(
            "once", [trigger_node(), {"id": "f", "type": "flaky"}], [("trigger", "f")]
        ))

        run(engine, "once")

        assert flaky.attempts["f"] == 1

    def test_backoff_schedule(self, catalog, store, registry, notifier):
        sleeps = []
        engine = WorkflowEngine(catalog, store, registry=registry, notifier=notifier,
                                max_concurrent_executions=1, max_parallel_steps=1, sleep=sleeps.append)
        catalog.register(build_workflow(
            "backoff",
            [trigger_node(), {"id": "f", "type": "flaky"}],
            [("trigger", "f")],
            settings={"retryLimit": 4, "retryBackoff": "exponential", "retryDelay": 1.5,
                      "maxRetryDelay": 5}
        ))
        try:
            run(engine, "backoff")
        finally:
            engine.shutdown()

        assert sleeps == [1.5, 3.0, 5]

    def test_node_override_beats_workflow_settings(self, catalog, store, registry, notifier):
        sleeps = []
        engine = WorkflowEngine(catalog, store, registry=registry, notifier=notifier, sleep=sleeps.append)
        catalog.register(build_workflow(
            "override",
            [trigger_node(), {"id": "f", "type": "flaky", "retryLimit": 3, "retryBackoff": "linear",
                              "retryDelay": 2}],
            [("trigger", "f")],
            settings={"retryLimit": 1, "retryDelay": 10}
        ))
        try:
            run(engine, "override")
        finally:
            engine.shutdown()

        assert sleeps == [2, 4]

    def test_step_timeout(self, engine, catalog):
        catalog.register(build_workflow(
            "too-slow",
            [trigger_node(), {"id": "slow", "type": "slow", "timeout": 0.1, "parameters": {"seconds": 1}}],
            [("trigger", "slow")]
        ))

        execution_id, record = run(engine, "too-slow")

        assert record.status == ExecutionStatusEnum.ERRORED
        assert record.error_type == "StepTimeoutError"
        assert engine.get_attempts(execution_id, "slow")[0].status == AttemptStatus.TIMED_OUT

    def test_abandoned_call_does_not_starve_later_steps(self, catalog, store, registry, notifier):
        """A call still running after its timeout leaves later timed steps unaffected."""
        catalog.register(build_workflow(
            "hang",
            [trigger_node(), {"id": "h", "type": "slow", "timeout": 0.2, "parameters": {"seconds": 2}}],
            [("trigger", "h")]
        ))
        catalog.register(build_workflow(
            "fast",
            [trigger_node(), {"id": "f", "type": "record", "timeout": 1}],
            [("trigger", "f")]
        ))
        engine = WorkflowEngine(catalog, store, registry=registry, notifier=notifier,
                                default_settings=WorkflowSettings(retry_delay=0), max_parallel_steps=1)
        try:
            _, hung = run(engine, "hang")
            _, record = run(engine, "fast")
        finally:
            engine.shutdown()

        assert hung.status == ExecutionStatusEnum.ERRORED
        assert record.status == ExecutionStatusEnum.COMPLETED


class TestSuspension:
    """Test cases for suspend-and-wait steps and external events."""

    def test_approval_suspends_and_resumes(self, engine, recorder, approval_workflow):
        execution_id, record = run(engine, approval_workflow)

        assert record.status == ExecutionStatusEnum.WAITING
        assert [w.node_id for w in record.waiting_on] == ["approval"]
        assert record.waiting_on[0].event_type == "approval"
        assert recorder.called_nodes() == []

        engine.send_event(execution_id, "approval", {"approved": True})
        record = engine.wait(execution_id, timeout=WAIT_TIMEOUT)

        assert record.status == ExecutionStatusEnum.COMPLETED
        assert recorder.called_nodes() == ["action"]
        output = engine.get_result(execution_id)["steps"]["approval"]
        assert output["event_type"] == "approval"
        assert output["payload"] == {"approved": True}
        assert engine.get_attempts(execution_id, "approval")[0].status == AttemptStatus.SUCCEEDED

    def test_notification_sent_after_wait_persisted(self, engine, notifier, approval_workflow):
        execution_id, _ = run(engine, approval_workflow)

        messages = notifier.messages(execution_id)
        assert len(messages) == 1
        assert messages[0]["node_id"] == "approval"
        assert messages[0]["event_type"] == "approval"
        assert messages[0]["payload"]["kind"] == "approval_requested"
        assert messages[0]["payload"]["message"] == "Ship it?"
        assert messages[0]["payload"]["approvers"] == ["ops@example.com"]

    def test_unexpected_event_rejected(self, engine, approval_workflow):
        execution_id, _ = run(engine, approval_workflow)

        with pytest.raises(EventNotAwaitedError):
            engine.send_event(execution_id, "payment")
        with pytest.raises(EventNotAwaitedError):
            engine.send_event(execution_id, "approval", node_id="action")

        assert engine.get_status(execution_id).status == ExecutionStatusEnum.WAITING

    def test_event_to_finished_execution_rejected(self, engine, linear_workflow):
        execution_id, _ = run(engine, linear_workflow)

        with pytest.raises(EventNotAwaitedError):
            engine.send_event(execution_id, "approval")

    def test_wait_timeout_errors_execution(self, engine, approval_workflow):
        execution_id, _ = run(engine, approval_workflow)

        assert engine.sweep_timeouts(now=later(seconds=24 * 60 * 60 + 5)) == 1

        record = engine.wait(execution_id, timeout=WAIT_TIMEOUT)
        assert record.status == ExecutionStatusEnum.ERRORED
        assert record.error_type == "StepTimeoutError"
        assert record.waiting_on == []
        assert engine.get_attempts(execution_id, "approval")[0].status == AttemptStatus.TIMED_OUT

    def test_explicit_wait_timeout(self, engine, catalog):
        catalog.register(build_workflow(
            "short-approval",
            [trigger_node(), approval_node(timeout="1s")],
            [("trigger", "approval")]
        ))
        execution_id, _ = run(engine, "short-approval")

        assert engine.sweep_timeouts(now=utcnow()) == 0
        assert engine.sweep_timeouts(now=later()) == 1

        record = engine.wait(execution_id, timeout=WAIT_TIMEOUT)
        assert record.status == ExecutionStatusEnum.ERRORED
        assert record.error_type == "StepTimeoutError"

    def test_expired_wait_is_retried(self, engine, notifier, catalog):
        catalog.register(build_workflow(
            "retry-approval",
            [trigger_node(), dict(approval_node(timeout="1s"), retryLimit=2)],
            [("trigger", "approval")]
        ))
        execution_id, _ = run(engine, "retry-approval")

        engine.sweep_timeouts(now=later())
        record = engine.wait(execution_id, timeout=WAIT_TIMEOUT)

        assert record.status == ExecutionStatusEnum.WAITING
        assert record.waiting_on[0].attempt_number == 2
        statuses = [a.status for a in engine.get_attempts(execution_id, "approval")]
        assert statuses == [AttemptStatus.TIMED_OUT, AttemptStatus.SUSPENDED]
        assert [m["payload"]["attempt"] for m in notifier.messages(execution_id)] == [1, 2]

    def test_late_event_rejected(self, engine, catalog):
        now = [utcnow()]
        engine._clock = lambda: now[0]
        catalog.register(build_workflow(
            "late",
            [trigger_node(), approval_node(timeout="1m")],
            [("trigger", "approval")]
        ))
        execution_id, _ = run(engine, "late")

        now[0] = now[0] + timedelta(minutes=5)
        with pytest.raises(EventNotAwaitedError):
            engine.send_event(execution_id, "approval", {"approved": True})

        record = engine.wait(execution_id, timeout=WAIT_TIMEOUT)
        assert record.status == ExecutionStatusEnum.ERRORED
        assert record.error_type == "StepTimeoutError"

    def test_delay_resolved_by_sweep(self, engine, recorder, catalog):
        catalog.register(build_workflow(
            "delayed",
            [trigger_node(), {"id": "pause", "type": "delay", "parameters": {"duration": "2s"}},
             {"id": "after", "type": "record"}],
            [("trigger", "pause"), ("pause", "after")]
        ))
        execution_id, record = run(engine, "delayed")

        assert record.status == ExecutionStatusEnum.WAITING
        assert record.waiting_on[0].kind == WaitKind.DELAY
        assert recorder.called_nodes() == []

        assert engine.sweep_timeouts(now=later()) == 1
        record = engine.wait(execution_id, timeout=WAIT_TIMEOUT)

        assert record.status == ExecutionStatusEnum.COMPLETED
        assert recorder.called_nodes() == ["after"]
        pause = engine.get_result(execution_id)["steps"]["pause"]
        assert set(pause) == {"scheduled_for", "resumed_at"}

    def test_parallel_waits_resume_after_last_event(self, engine, recorder, catalog):
        catalog.register(build_workflow(
            "two-approvals",
            [
                trigger_node(),
                approval_node("legal", event_type="legal"),
                approval_node("finance", event_type="finance"),
                {"id": "ship", "type": "record"},
            ],
            [("trigger", "legal"), ("trigger", "finance"), ("legal", "ship"), ("finance", "ship")]
        ))
        execution_id, record = run(engine, "two-approvals")
        assert {w.node_id for w in record.waiting_on} == {"legal", "finance"}

        record = engine.send_event(execution_id, "legal", {"ok": True})
        assert record.status == ExecutionStatusEnum.WAITING
        assert [w.node_id for w in record.waiting_on] == ["finance"]

        engine.send_event(execution_id, "finance", {"ok": True})
        record = engine.wait(execution_id, timeout=WAIT_TIMEOUT)

        assert record.status == ExecutionStatusEnum.COMPLETED
        assert recorder.called_nodes() == ["ship"]

    def test_event_waits_for_running_siblings(self, engine, notifier, catalog):
        catalog.register(build_workflow(
            "approve-while-busy",
            [trigger_node(), approval_node(), {"id": "busy", "type": "slow", "parameters": {"seconds": 0.5}}],
            [("trigger", "approval"), ("trigger", "busy")]
        ))
        execution_id = engine.start("approve-while-busy")
        deadline = time.monotonic() + WAIT_TIMEOUT
        while not notifier.messages(execution_id) and time.monotonic() < deadline:
            time.sleep(0.01)

        engine.send_event(execution_id, "approval", {"approved": True})
        record = engine.wait(execution_id, timeout=WAIT_TIMEOUT)

        assert record.status == ExecutionStatusEnum.COMPLETED
        steps = engine.get_result(execution_id)["steps"]
        assert steps["busy"] == {"slept": 0.5}
        assert steps["approval"]["payload"] == {"approved": True}


class TestCancellation:
    """Test cases for cancelling executions."""

    def test_cancel_waiting_execution(self, engine, recorder, approval_workflow):
        execution_id, _ = run(engine, approval_workflow)

        record = engine.cancel(execution_id)

        assert record.status == ExecutionStatusEnum.CANCELLED
        assert record.error == "Execution cancelled by user"
        assert record.waiting_on == []
        assert engine.get_attempts(execution_id, "approval")[0].status == AttemptStatus.CANCELLED
        with pytest.raises(EventNotAwaitedError):
            engine.send_event(execution_id, "approval")
        assert recorder.called_nodes() == []

    def test_cancel_running_execution_stops_before_next_layer(self, engine, recorder, catalog):
        catalog.register(build_workflow(
            "long",
            [trigger_node(), {"id": "a", "type": "record", "parameters": {"sleep": 0.3}},
             {"id": "b", "type": "record"}],
            [("trigger", "a"), ("a", "b")]
        ))
        execution_id = engine.start("long")

        engine.cancel(execution_id)
        record = engine.wait(execution_id, timeout=WAIT_TIMEOUT)

        assert record.status == ExecutionStatusEnum.CANCELLED
        assert "b" not in recorder.called_nodes()

    def test_cancel_finished_execution_is_noop(self, engine, linear_workflow):
        execution_id, _ = run(engine, linear_workflow)

        record = engine.cancel(execution_id)

        assert record.status == ExecutionStatusEnum.COMPLETED
        assert record.cancel_requested is False

    def test_run_locks_released_when_finished(self, engine, linear_workflow, approval_workflow):
        completed_id, _ = run(engine, linear_workflow)
        waiting_id, _ = run(engine, approval_workflow)

        assert completed_id not in engine._run_locks
        assert waiting_id in engine._run_locks

        engine.cancel(waiting_id)
        with pytest.raises(EventNotAwaitedError):
            engine.send_event(waiting_id, "approval")

        assert waiting_id not in engine._run_locks


class TestDurability:
    """Test cases for resuming from persisted state."""

    def test_recorded_steps_are_not_rerun(self, engine, store, recorder, linear_workflow):
        """Simulates a crash after node 'a' was recorded but before 'b' ran."""
        trigger = TriggerContext(type="manual", payload={}, timestamp=datetime(2025, 1, 1))
        store.create_execution("crashed", linear_workflow, trigger)
        store.save_execution_state("crashed", StateDelta(status=ExecutionStatusEnum.RUNNING))
        store.save_execution_state("crashed", StateDelta(
            step_output=StepOutput(node_id="trigger", output={"triggered": True})
        ))
        store.save_execution_state("crashed", StateDelta(
            step_output=StepOutput(node_id="a", output={"node": "a", "before_crash": True})
        ))

        engine.resume("crashed")
        record = engine.wait("crashed", timeout=WAIT_TIMEOUT)

        assert record.status == ExecutionStatusEnum.COMPLETED
        assert recorder.called_nodes() == ["b"]
        assert engine.get_result("crashed")["steps"]["a"] == {"node": "a", "before_crash": True}

    def test_interrupted_attempt_is_rerun(self, engine, store, recorder, linear_workflow):
        """Simulates a crash while node 'a' was running, before its outcome was logged."""
        trigger = TriggerContext(type="manual", payload={}, timestamp=datetime(2025, 1, 1))
        store.create_execution("mid-step", linear_workflow, trigger)
        store.save_execution_state("mid-step", StateDelta(status=ExecutionStatusEnum.RUNNING))
        store.save_execution_state("mid-step", StateDelta(
            step_output=StepOutput(node_id="trigger", output={"triggered": True})
        ))
        store.record_attempt(StepAttempt(
            execution_id="mid-step", node_id="a", attempt_number=1,
            status=AttemptStatus.RUNNING, started_at=datetime(2025, 1, 1)
        ))

        assert engine.recover() == ["mid-step"]
        record = engine.wait("mid-step", timeout=WAIT_TIMEOUT)

        assert record.status == ExecutionStatusEnum.COMPLETED
        assert recorder.called_nodes() == ["a", "b"]
        attempts = engine.get_attempts("mid-step", "a")
        assert [(a.attempt_number, a.status) for a in attempts] == [(1, AttemptStatus.SUCCEEDED)]
        assert attempts[0].finished_at is not None

    def test_recover_interrupted_executions(self, engine, store, recorder, linear_workflow, approval_workflow):
        trigger = TriggerContext(type="manual", payload={}, timestamp=datetime(2025, 1, 1))
        store.create_execution("queued-run", linear_workflow, trigger)
        waiting_id, _ = run(engine, approval_workflow)

        recovered = engine.recover()

        assert recovered == ["queued-run"]
        record = engine.wait("queued-run", timeout=WAIT_TIMEOUT)
        assert record.status == ExecutionStatusEnum.COMPLETED
        assert engine.get_status(waiting_id).status == ExecutionStatusEnum.WAITING

    def test_waits_survive_engine_restart(self, catalog, store, registry, notifier, approval_workflow):
        first = WorkflowEngine(catalog, store, registry=registry, notifier=notifier)
        execution_id = first.start(approval_workflow)
        first.wait(execution_id, timeout=WAIT_TIMEOUT)
        first.shutdown()

        second = WorkflowEngine(catalog, store, registry=registry, notifier=notifier)
        try:
            assert second.recover() == []
            second.send_event(execution_id, "approval", {"approved": True})
            record = second.wait(execution_id, timeout=WAIT_TIMEOUT)
        finally:
            second.shutdown()

        assert record.status == ExecutionStatusEnum.COMPLETED

    def test_deleted_workflow_errors_execution(self, engine, store, catalog, linear_workflow):
        trigger = TriggerContext(type="manual", payload={}, timestamp=datetime(2025, 1, 1))
        store.create_execution("orphan", linear_workflow, trigger)
        catalog.delete(linear_workflow)

        engine.resume("orphan")
        record = engine.wait("orphan", timeout=WAIT_TIMEOUT)

        assert record.status == ExecutionStatusEnum.ERRORED
        assert record.error_type == "FatalError"


class TestEffectiveSettings:
    """Test cases for merging workflow settings over engine defaults."""

    def test_unset_fields_use_engine_defaults(self, engine, catalog):
        catalog.register(build_workflow(
            "partial-settings", [trigger_node()], settings={"retryLimit": 3}
        ))

        settings = engine._effective_settings(catalog.get("partial-settings"))

        assert settings.retry_limit == 3
        assert settings.retry_delay == 0
        assert settings.wait_timeout == WorkflowSettings().wait_timeout
