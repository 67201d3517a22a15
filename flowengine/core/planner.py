"""Execution order planning: topological layers of independent nodes."""

from typing import Dict, List

from ..models.core import WorkflowDefinition
from .exceptions import CycleError
from .logging import get_logger

logger = get_logger(__name__)


def plan(definition: WorkflowDefinition) -> List[List[str]]:
    """
    Compute execution layers with Kahn's algorithm.

    Every node in a layer has all of its live predecessors in earlier layers,
    so a layer's members can run concurrently. Disabled nodes are dropped
    together with their edges; members keep the definition's node order.

    Args:
        definition: A validated workflow definition

    Returns:
        List of layers, each a list of node ids

    Raises:
        CycleError: If the live graph contains a cycle
    """
    live = [node.id for node in definition.nodes if not node.disabled]
    live_set = set(live)
    order = {node_id: index for index, node_id in enumerate(live)}

    successors_of: Dict[str, List[str]] = {node_id: [] for node_id in live}
    in_degree: Dict[str, int] = {node_id: 0 for node_id in live}

    for source_id, target_id in definition.edges():
        if source_id not in live_set or target_id not in live_set:
            continue
        successors_of[source_id].append(target_id)
        in_degree[target_id] += 1

    layers: List[List[str]] = []
    ready = [node_id for node_id in live if in_degree[node_id] == 0]
    placed = 0

    while ready:
        layers.append(ready)
        placed += len(ready)
        next_ready = []
        for node_id in ready:
            for target_id in successors_of[node_id]:
                in_degree[target_id] -= 1
                if in_degree[target_id] == 0:
                    next_ready.append(target_id)
        ready = sorted(next_ready, key=order.__getitem__)

    if placed != len(live):
        remaining = [node_id for node_id in live if in_degree[node_id] > 0]
        raise CycleError(
            f"Cycle detected in workflow. Nodes involved: {', '.join(remaining)}",
            node_id=remaining[0],
            workflow_id=definition.id
        )

    logger.debug(f"Planned workflow {definition.id}: {layers}")
    return layers


def predecessors(definition: WorkflowDefinition, node_id: str) -> List[str]:
    return [source for source, target in definition.edges() if target == node_id]


def successors(definition: WorkflowDefinition, node_id: str) -> List[str]:
    return [target for source, target in definition.edges() if source == node_id]


def is_trigger_node(definition: WorkflowDefinition, node_id: str) -> bool:
    """A node with no incoming connections."""
    return not predecessors(definition, node_id)


def is_terminal_node(definition: WorkflowDefinition, node_id: str) -> bool:
    return not successors(definition, node_id)
