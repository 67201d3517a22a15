"""Structural validation of workflow definitions."""

from collections import Counter
from typing import Dict, List, Optional, Set

from ..models.core import ValidationResult, WorkflowDefinition
from .exceptions import CycleError, ValidationError
from .logging import get_logger
from .registry import ExecutorRegistry

logger = get_logger(__name__)

TRIGGER_CATEGORY = "trigger"


def check(definition: WorkflowDefinition, registry: ExecutorRegistry) -> ValidationResult:
    """
    Collect every validation problem in ``definition`` without raising.

    Args:
        definition: Workflow to inspect
        registry: Executors the workflow will run against

    Returns:
        ValidationResult with errors and warnings
    """
    errors = _structural_errors(definition, registry)
    cycle_node = find_cycle_node(definition)
    if cycle_node is not None:
        errors.append(f"Cycle detected in workflow at node '{cycle_node}'")
    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=_warnings(definition, registry) if not errors else []
    )


def validate(definition: WorkflowDefinition, registry: ExecutorRegistry) -> None:
    """
    Validate ``definition``; has no side effects.

    Raises:
        CycleError: If the connection graph contains a cycle
        ValidationError: For any other structural problem
    """
    errors = _structural_errors(definition, registry)
    if errors:
        raise ValidationError(
            f"Workflow validation failed: {'; '.join(errors)}",
            validation_errors=errors,
            workflow_id=definition.id
        )

    cycle_node = find_cycle_node(definition)
    if cycle_node is not None:
        raise CycleError(
            f"Cycle detected in workflow at node '{cycle_node}'",
            node_id=cycle_node,
            workflow_id=definition.id
        )


def _structural_errors(definition: WorkflowDefinition, registry: ExecutorRegistry) -> List[str]:
    errors: List[str] = []

    if not definition.nodes:
        errors.append("Workflow has no nodes")
        return errors

    counts = Counter(node.id for node in definition.nodes)
    for node_id, count in sorted(counts.items()):
        if count > 1:
            errors.append(f"Duplicate node id '{node_id}' appears {count} times")

    node_ids = set(counts)
    for source_id, ports in definition.connections.items():
        if source_id not in node_ids:
            errors.append(f"Connection references unknown source node '{source_id}'")
        for port in ports:
            for connection in port:
                if connection.target_node_id not in node_ids:
                    errors.append(
                        f"Connection from '{source_id}' references unknown target node "
                        f"'{connection.target_node_id}'"
                    )

    for node in definition.nodes:
        if not registry.exists(node.type):
            errors.append(f"Unknown step type '{node.type}' (node: {node.id})")
            continue
        for problem in registry.get(node.type).validate_parameters(node.parameters):
            errors.append(f"Node '{node.id}': {problem}")

    return errors


def _warnings(definition: WorkflowDefinition, registry: ExecutorRegistry) -> List[str]:
    warnings = []

    connected: Set[str] = set()
    for source_id, target_id in definition.edges():
        connected.add(source_id)
        connected.add(target_id)
    if len(definition.nodes) > 1:
        isolated = sorted(node.id for node in definition.nodes if node.id not in connected)
        if isolated:
            warnings.append(f"Isolated nodes detected: {', '.join(isolated)}")

    trigger_types = set(registry.types_in_category(TRIGGER_CATEGORY))
    if trigger_types and not any(node.type in trigger_types for node in definition.nodes):
        warnings.append("Workflow has no trigger node")

    return warnings


def find_cycle_node(definition: WorkflowDefinition) -> Optional[str]:
    """Return the id of a node lying on a cycle, or None for an acyclic graph.

    Uses an iterative DFS so chain length is not bounded by the interpreter's
    recursion limit; only edges between known nodes count.
    """
    node_ids = [node.id for node in definition.nodes]
    known = set(node_ids)
    graph: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
    for source_id, target_id in definition.edges():
        if source_id in known and target_id in known:
            graph[source_id].append(target_id)

    visited: Set[str] = set()
    rec_stack: Set[str] = set()

    for root in node_ids:
        if root in visited:
            continue
        visited.add(root)
        rec_stack.add(root)
        stack = [(root, iter(graph[root]))]
        while stack:
            node_id, neighbors = stack[-1]
            for neighbor in neighbors:
                if neighbor in rec_stack:
                    return neighbor
                if neighbor not in visited:
                    visited.add(neighbor)
                    rec_stack.add(neighbor)
                    stack.append((neighbor, iter(graph[neighbor])))
                    break
            else:
                stack.pop()
                rec_stack.discard(node_id)
    return None
