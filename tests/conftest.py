"""Pytest configuration and fixtures."""

import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import pytest

from flowengine.core.catalog import WorkflowCatalog
from flowengine.core.exceptions import ExecutionError
from flowengine.core.notifications import InMemoryNotificationChannel
from flowengine.core.orchestrator import WorkflowEngine
from flowengine.executors.base import StepExecutor
from flowengine.factory import create_registry
from flowengine.models.core import WorkflowDefinition, WorkflowSettings
from flowengine.storage.database import create_database_engine, create_session_factory, create_tables
from flowengine.storage.store import SQLAlchemyExecutionStore


class RecordingExecutor(StepExecutor):
    """Records every call and returns ``parameters["output"]`` (or an echo)."""

    type = "record"
    description = "Test executor that records calls"

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def execute(self, node_id, parameters, context, env):
        with self._lock:
            self.calls.append({
                "node_id": node_id,
                "parameters": parameters,
                "visible_steps": sorted(context.steps),
                "attempt": env.attempt_number,
            })
        if parameters.get("sleep"):
            time.sleep(parameters["sleep"])
        return parameters.get("output", {"node": node_id})

    def called_nodes(self) -> List[str]:
        with self._lock:
            return [call["node_id"] for call in self.calls]

    def calls_for(self, node_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [call for call in self.calls if call["node_id"] == node_id]


class FlakyExecutor(StepExecutor):
    """Fails the first ``fail_times`` calls per node (all calls when unset)."""

    type = "flaky"
    description = "Test executor that raises ExecutionError"

    def __init__(self):
        self.attempts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def execute(self, node_id, parameters, context, env):
        with self._lock:
            self.attempts[node_id] = self.attempts.get(node_id, 0) + 1
            count = self.attempts[node_id]
        fail_times = parameters.get("fail_times")
        if fail_times is None or count <= fail_times:
            raise ExecutionError(f"boom #{count}", node_id=node_id)
        return {"succeeded_on": count}


class SlowExecutor(StepExecutor):
    """Sleeps for ``seconds`` before returning."""

    type = "slow"

    def execute(self, node_id, parameters, context, env):
        time.sleep(parameters.get("seconds", 0.5))
        return {"slept": parameters.get("seconds", 0.5)}


def build_workflow(workflow_id: str, nodes: List[Dict[str, Any]], edges: List[Tuple[str, str]] = (),
                   settings: Optional[Dict[str, Any]] = None) -> WorkflowDefinition:
    """Build a definition from node dicts and (source, target) pairs."""
    connections: Dict[str, List[List[Dict[str, Any]]]] = {}
    for source, target in edges:
        connections.setdefault(source, [[]])[0].append({"node": target, "index": 0})
    data = {"id": workflow_id, "name": workflow_id, "nodes": nodes, "connections": connections}
    if settings is not None:
        data["settings"] = settings
    return WorkflowDefinition.model_validate(data)


@pytest.fixture
def db_engine():
    """Create an in-memory database with all tables."""
    engine = create_database_engine("sqlite:///:memory:")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def storage_lock():
    return threading.RLock()


@pytest.fixture
def store(session_factory, storage_lock):
    return SQLAlchemyExecutionStore(session_factory, lock=storage_lock)


@pytest.fixture
def recorder():
    return RecordingExecutor()


@pytest.fixture
def flaky():
    return FlakyExecutor()


@pytest.fixture
def registry(recorder, flaky):
    """Built-in executors plus the test executors."""
    return create_registry([recorder, flaky, SlowExecutor()])


@pytest.fixture
def catalog(session_factory, registry, storage_lock):
    return WorkflowCatalog(session_factory, registry, lock=storage_lock)


@pytest.fixture
def notifier():
    return InMemoryNotificationChannel()


@pytest.fixture
def engine(catalog, store, registry, notifier):
    """Engine with zero retry delay so retry tests run instantly."""
    engine = WorkflowEngine(
        catalog=catalog,
        store=store,
        registry=registry,
        notifier=notifier,
        default_settings=WorkflowSettings(retry_delay=0),
        max_concurrent_executions=4,
        max_parallel_steps=4
    )
    yield engine
    engine.shutdown()
