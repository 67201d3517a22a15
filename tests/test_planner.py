"""Tests for execution order planning."""

import itertools
import random

import pytest

from flowengine.core import planner
from flowengine.core.exceptions import CycleError

from conftest import build_workflow


def layer_index(layers):
    return {node_id: index for index, layer in enumerate(layers) for node_id in layer}


class TestPlan:
    """Test cases for planner.plan."""

    def test_linear_chain(self):
        definition = build_workflow(
            "chain",
            [{"id": n, "type": "record"} for n in ("a", "b", "c")],
            [("a", "b"), ("b", "c")]
        )

        assert planner.plan(definition) == [["a"], ["b"], ["c"]]

    def test_fan_out_shares_a_layer(self):
        """Siblings with a common predecessor and no edge between them run together."""
        definition = build_workflow(
            "fan-out",
            [
                {"id": "trigger", "type": "manual-trigger"},
                {"id": "http", "type": "record"},
                {"id": "agent", "type": "record"},
                {"id": "notify", "type": "record"},
            ],
            [("trigger", "http"), ("http", "agent"), ("http", "notify")]
        )

        assert planner.plan(definition) == [["trigger"], ["http"], ["agent", "notify"]]

    def test_layer_members_keep_definition_order(self):
        definition = build_workflow(
            "order",
            [{"id": n, "type": "record"} for n in ("z", "m", "a")]
        )

        assert planner.plan(definition) == [["z", "m", "a"]]

    def test_diamond_joins_after_both_branches(self):
        definition = build_workflow(
            "diamond",
            [{"id": n, "type": "record"} for n in ("top", "left", "right", "bottom")],
            [("top", "left"), ("top", "right"), ("left", "bottom"), ("right", "bottom")]
        )

        layers = planner.plan(definition)
        assert layers == [["top"], ["left", "right"], ["bottom"]]

    def test_disabled_nodes_are_dropped(self):
        definition = build_workflow(
            "disabled",
            [
                {"id": "a", "type": "record"},
                {"id": "b", "type": "record", "disabled": True},
                {"id": "c", "type": "record"},
            ],
            [("a", "b"), ("b", "c")]
        )

        layers = planner.plan(definition)
        assert "b" not in layer_index(layers)
        assert layers == [["a", "c"]]

    def test_cycle_raises(self):
        definition = build_workflow(
            "cycle",
            [{"id": n, "type": "record"} for n in ("a", "b", "c")],
            [("a", "b"), ("b", "c"), ("c", "b")]
        )

        with pytest.raises(CycleError) as exc_info:
            planner.plan(definition)
        assert exc_info.value.node_id in ("b", "c")

    def test_every_edge_points_to_a_later_layer(self):
        """Random DAGs: for every edge A->B, A is planned in an earlier layer than B."""
        rng = random.Random(7)
        for trial in range(25):
            names = [f"n{i}" for i in range(rng.randint(2, 12))]
            edges = [
                (a, b) for a, b in itertools.combinations(names, 2)
                if rng.random() < 0.3
            ]
            shuffled = names[:]
            rng.shuffle(shuffled)
            definition = build_workflow(
                f"random-{trial}", [{"id": n, "type": "record"} for n in shuffled], edges
            )

            layers = planner.plan(definition)
            index = layer_index(layers)
            assert sorted(index) == sorted(names)
            for source, target in edges:
                assert index[source] < index[target]


class TestGraphHelpers:
    """Test cases for graph navigation helpers."""

    @pytest.fixture
    def definition(self):
        return build_workflow(
            "helpers",
            [{"id": n, "type": "record"} for n in ("trigger", "a", "b", "end")],
            [("trigger", "a"), ("trigger", "b"), ("a", "end"), ("b", "end")]
        )

    def test_predecessors_and_successors(self, definition):
        assert planner.predecessors(definition, "end") == ["a", "b"]
        assert planner.successors(definition, "trigger") == ["a", "b"]

    def test_trigger_and_terminal_nodes(self, definition):
        assert planner.is_trigger_node(definition, "trigger")
        assert not planner.is_trigger_node(definition, "a")
        assert planner.is_terminal_node(definition, "end")
        assert not planner.is_terminal_node(definition, "b")
