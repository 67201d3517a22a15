"""Core Pydantic models for the workflow engine."""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite round-trips."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


NODE_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')


class ExecutionStatusEnum(str, Enum):
    """Enumeration of workflow execution statuses."""
    QUEUED = "queued"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatusEnum.COMPLETED, ExecutionStatusEnum.ERRORED, ExecutionStatusEnum.CANCELLED)


class BackoffStrategy(str, Enum):
    """Delay growth between retry attempts."""
    CONSTANT = "constant"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class AttemptStatus(str, Enum):
    """Outcome of a single step attempt."""
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class WaitKind(str, Enum):
    """What a suspended step is waiting for."""
    EVENT = "event"
    DELAY = "delay"


class WaitStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class ValidationResult(BaseModel):
    """Result of workflow validation."""
    is_valid: bool = Field(..., description="Whether the workflow is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


class WorkflowSettings(BaseModel):
    """Workflow-wide defaults applied to nodes that do not override them."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    retry_limit: int = Field(1, alias="retryLimit", description="Total attempts per step")
    retry_backoff: BackoffStrategy = Field(BackoffStrategy.CONSTANT, alias="retryBackoff")
    retry_delay: float = Field(1.0, alias="retryDelay", description="Base delay between attempts in seconds")
    max_retry_delay: float = Field(60.0, alias="maxRetryDelay")
    timeout: Optional[float] = Field(None, description="Per-step timeout in seconds")
    wait_timeout: float = Field(24 * 60 * 60, alias="waitTimeout",
                                description="Default deadline for suspend-and-wait steps in seconds")

    @field_validator('retry_limit')
    @classmethod
    def validate_retry_limit(cls, retry_limit):
        if retry_limit < 1:
            raise ValueError("Retry limit must allow at least one attempt")
        return retry_limit

    @field_validator('retry_delay', 'max_retry_delay')
    @classmethod
    def validate_delays(cls, delay):
        if delay < 0:
            raise ValueError("Retry delays cannot be negative")
        return delay

    @field_validator('timeout', 'wait_timeout')
    @classmethod
    def validate_timeouts(cls, timeout):
        if timeout is not None and timeout <= 0:
            raise ValueError("Timeout must be positive")
        return timeout


class Connection(BaseModel):
    """One edge endpoint on an output port."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    target_node_id: str = Field(..., alias="targetNodeId", description="Target node ID")
    input_index: int = Field(0, alias="inputIndex", description="Input slot on the target node")


class Node(BaseModel):
    """Definition of a workflow node."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., description="Unique identifier for the node")
    display_name: str = Field("", alias="displayName", description="Cosmetic label, may repeat")
    type: str = Field(..., description="Step type selecting an executor")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Parameters, may contain templates")
    retry_limit: Optional[int] = Field(None, alias="retryLimit")
    retry_backoff: Optional[BackoffStrategy] = Field(None, alias="retryBackoff")
    retry_delay: Optional[float] = Field(None, alias="retryDelay")
    timeout: Optional[float] = Field(None, description="Timeout in seconds for this step")
    disabled: bool = False

    @model_validator(mode='before')
    @classmethod
    def accept_name_alias(cls, data):
        """Editor exports label nodes with ``name``."""
        if isinstance(data, dict) and "name" in data and "displayName" not in data and "display_name" not in data:
            data = dict(data)
            data["display_name"] = data.pop("name")
        return data

    @field_validator('id')
    @classmethod
    def validate_id_format(cls, id_value):
        """Ensure node ID is usable as a single dotted-path segment."""
        if not id_value or not id_value.strip():
            raise ValueError("Node ID cannot be empty")
        if not NODE_ID_PATTERN.match(id_value.strip()):
            raise ValueError("Node ID must contain only alphanumeric characters, underscores, and hyphens")
        return id_value.strip()

    @field_validator('type')
    @classmethod
    def validate_type(cls, step_type):
        if not step_type or not step_type.strip():
            raise ValueError("Node type cannot be empty")
        return step_type.strip()

    @field_validator('retry_limit')
    @classmethod
    def validate_retry_limit(cls, retry_limit):
        if retry_limit is not None and retry_limit < 1:
            raise ValueError("Retry limit must allow at least one attempt")
        return retry_limit

    @field_validator('timeout')
    @classmethod
    def validate_timeout(cls, timeout):
        if timeout is not None and timeout <= 0:
            raise ValueError("Timeout must be positive")
        return timeout


class WorkflowDefinition(BaseModel):
    """Complete definition of a workflow graph.

    Structural rules (unique ids, known references, acyclicity) are enforced by
    :mod:`flowengine.core.validator` so that a bad graph can be reported as a
    whole rather than failing on the first pydantic error.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., description="Workflow identifier")
    name: str = Field("", description="Human readable workflow name")
    nodes: List[Node] = Field(default_factory=list)
    connections: Dict[str, List[List[Connection]]] = Field(default_factory=dict)
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)

    @field_validator('connections', mode='before')
    @classmethod
    def normalize_connections(cls, connections):
        """Accept editor exports shaped ``{source: {"main": [[{"node": ..., "index": ...}]]}}``."""
        if not isinstance(connections, dict):
            return connections
        normalized = {}
        for source_id, ports in connections.items():
            if isinstance(ports, dict):
                ports = ports.get("main", [])
            converted_ports = []
            for port in ports or []:
                converted = []
                for target in port or []:
                    if isinstance(target, dict) and "node" in target:
                        target = {"targetNodeId": target["node"], "inputIndex": target.get("index", 0)}
                    converted.append(target)
                converted_ports.append(converted)
            normalized[source_id] = converted_ports
        return normalized

    @field_validator('id')
    @classmethod
    def validate_id(cls, workflow_id):
        if not workflow_id or not workflow_id.strip():
            raise ValueError("Workflow ID cannot be empty")
        return workflow_id.strip()

    def node_map(self) -> Dict[str, Node]:
        """Map node id to node; later duplicates are shadowed."""
        return {node.id: node for node in self.nodes}

    def get_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def edges(self) -> Iterator[Tuple[str, str]]:
        """Yield every (source, target) pair across all output ports."""
        for source_id, ports in self.connections.items():
            for port in ports:
                for connection in port:
                    yield source_id, connection.target_node_id


class TriggerContext(BaseModel):
    """The event that started an execution."""
    type: str = "manual"
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime

    def as_lookup(self) -> Dict[str, Any]:
        return {"type": self.type, "payload": self.payload, "timestamp": self.timestamp.isoformat()}


class WaitRecord(BaseModel):
    """Persisted suspension of a single node."""
    execution_id: str
    node_id: str
    kind: WaitKind = WaitKind.EVENT
    event_type: Optional[str] = None
    deadline: datetime
    attempt_number: int = 1
    status: WaitStatus = WaitStatus.PENDING
    payload: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class ExecutionRecord(BaseModel):
    """Status of a workflow execution."""
    id: str = Field(..., description="Unique identifier for the execution")
    workflow_id: str = Field(..., description="ID of the workflow being executed")
    status: ExecutionStatusEnum = Field(..., description="Current execution status")
    completed_node_ids: List[str] = Field(default_factory=list)
    error: Optional[str] = Field(None, description="Last error message if execution errored")
    error_type: Optional[str] = None
    waiting_on: List[WaitRecord] = Field(default_factory=list)
    cancel_requested: bool = False
    created_at: datetime
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class StepAttempt(BaseModel):
    """Diagnostic log entry for one executor call."""
    execution_id: str
    node_id: str
    attempt_number: int
    status: AttemptStatus
    input_snapshot: Optional[Dict[str, Any]] = None
    output: Optional[Any] = None
    error: Optional[str] = None
    unresolved_variables: List[str] = Field(default_factory=list)
    started_at: datetime
    finished_at: Optional[datetime] = None


class StepOutput(BaseModel):
    """A recorded node output (one write-ahead log entry)."""
    node_id: str
    output: Any = None


class StateDelta(BaseModel):
    """A change to persisted execution state, applied in one transaction."""
    status: Optional[ExecutionStatusEnum] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    step_output: Optional[StepOutput] = None
    open_wait: Optional[WaitRecord] = None
    close_wait_node_id: Optional[str] = None
    close_wait_status: WaitStatus = WaitStatus.RESOLVED
    close_wait_payload: Optional[Dict[str, Any]] = None
    cancel_requested: Optional[bool] = None


class WorkflowSummary(BaseModel):
    """Summary information about a registered workflow."""
    id: str
    name: str
    created_at: datetime
    node_count: int
