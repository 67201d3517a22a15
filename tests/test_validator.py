"""Tests for workflow definition validation."""

import pytest

from flowengine.core import validator
from flowengine.core.exceptions import CycleError, ValidationError
from flowengine.models.core import WorkflowDefinition

from conftest import build_workflow


class TestValidate:
    """Test cases for validator.validate."""

    def test_valid_linear_workflow(self, registry):
        """A trigger followed by two actions passes validation."""
        definition = build_workflow(
            "linear",
            [
                {"id": "trigger", "type": "manual-trigger"},
                {"id": "a", "type": "record"},
                {"id": "b", "type": "record"},
            ],
            [("trigger", "a"), ("a", "b")]
        )

        validator.validate(definition, registry)
        result = validator.check(definition, registry)
        assert result.is_valid
        assert result.errors == []

    def test_duplicate_node_ids(self, registry):
        definition = build_workflow(
            "dupes",
            [{"id": "a", "type": "record"}, {"id": "a", "type": "record"}]
        )

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(definition, registry)
        assert any("Duplicate node id 'a'" in error for error in exc_info.value.validation_errors)

    def test_dangling_connection_target(self, registry):
        definition = build_workflow(
            "dangling",
            [{"id": "a", "type": "record"}],
            [("a", "ghost")]
        )

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(definition, registry)
        assert "ghost" in exc_info.value.message

    def test_dangling_connection_source(self, registry):
        definition = build_workflow(
            "dangling-source",
            [{"id": "a", "type": "record"}],
            [("ghost", "a")]
        )

        result = validator.check(definition, registry)
        assert not result.is_valid
        assert any("unknown source node 'ghost'" in error for error in result.errors)

    def test_unknown_step_type(self, registry):
        definition = build_workflow("unknown", [{"id": "a", "type": "teleport"}])

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(definition, registry)
        assert "Unknown step type 'teleport'" in exc_info.value.message

    def test_missing_required_parameter(self, registry):
        """An http-request node without a url is rejected at load time."""
        definition = build_workflow("no-url", [{"id": "call", "type": "http-request"}])

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(definition, registry)
        assert any("URL is required" in error for error in exc_info.value.validation_errors)

    def test_disabled_node_still_checked(self, registry):
        definition = build_workflow(
            "disabled",
            [{"id": "a", "type": "record"}, {"id": "b", "type": "approval", "disabled": True}],
            [("a", "b")]
        )

        with pytest.raises(ValidationError):
            validator.validate(definition, registry)

    def test_empty_workflow(self, registry):
        definition = WorkflowDefinition(id="empty")

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(definition, registry)
        assert "no nodes" in exc_info.value.message

    def test_reports_all_problems_at_once(self, registry):
        definition = build_workflow(
            "many-problems",
            [
                {"id": "a", "type": "teleport"},
                {"id": "a", "type": "record"},
                {"id": "b", "type": "http-request"},
            ],
            [("b", "nowhere")]
        )

        result = validator.check(definition, registry)
        assert not result.is_valid
        assert len(result.errors) >= 4


class TestCycleDetection:
    """Test cases for cycle rejection."""

    def test_two_node_cycle(self, registry):
        definition = build_workflow(
            "cycle",
            [{"id": "a", "type": "record"}, {"id": "b", "type": "record"}],
            [("a", "b"), ("b", "a")]
        )

        with pytest.raises(CycleError) as exc_info:
            validator.validate(definition, registry)
        assert exc_info.value.node_id in ("a", "b")
        assert isinstance(exc_info.value, ValidationError)

    def test_self_loop(self, registry):
        definition = build_workflow("self-loop", [{"id": "a", "type": "record"}], [("a", "a")])

        with pytest.raises(CycleError) as exc_info:
            validator.validate(definition, registry)
        assert exc_info.value.node_id == "a"

    def test_cycle_behind_acyclic_prefix(self, registry):
        definition = build_workflow(
            "tail-cycle",
            [
                {"id": "trigger", "type": "manual-trigger"},
                {"id": "a", "type": "record"},
                {"id": "b", "type": "record"},
                {"id": "c", "type": "record"},
            ],
            [("trigger", "a"), ("a", "b"), ("b", "c"), ("c", "a")]
        )

        assert validator.find_cycle_node(definition) in ("a", "b", "c")
        with pytest.raises(CycleError):
            validator.validate(definition, registry)

    def test_diamond_is_not_a_cycle(self, registry):
        definition = build_workflow(
            "diamond",
            [
                {"id": "top", "type": "record"},
                {"id": "left", "type": "record"},
                {"id": "right", "type": "record"},
                {"id": "bottom", "type": "record"},
            ],
            [("top", "left"), ("top", "right"), ("left", "bottom"), ("right", "bottom")]
        )

        assert validator.find_cycle_node(definition) is None
        validator.validate(definition, registry)

    def test_long_chain_is_accepted(self, registry):
        """Chains longer than the interpreter recursion limit still validate."""
        node_ids = [f"n{i}" for i in range(1500)]
        definition = build_workflow(
            "long-chain",
            [{"id": node_id, "type": "record"} for node_id in node_ids],
            list(zip(node_ids, node_ids[1:]))
        )

        assert validator.find_cycle_node(definition) is None
        validator.validate(definition, registry)

    def test_long_chain_closing_back_on_itself(self, registry):
        node_ids = [f"n{i}" for i in range(1500)]
        definition = build_workflow(
            "long-loop",
            [{"id": node_id, "type": "record"} for node_id in node_ids],
            list(zip(node_ids, node_ids[1:])) + [(node_ids[-1], node_ids[0])]
        )

        with pytest.raises(CycleError) as exc_info:
            validator.validate(definition, registry)
        assert exc_info.value.node_id == "n0"


class TestWarnings:
    """Test cases for non-fatal validation warnings."""

    def test_isolated_node_warning(self, registry):
        definition = build_workflow(
            "isolated",
            [
                {"id": "trigger", "type": "manual-trigger"},
                {"id": "a", "type": "record"},
                {"id": "lonely", "type": "record"},
            ],
            [("trigger", "a")]
        )

        result = validator.check(definition, registry)
        assert result.is_valid
        assert any("lonely" in warning for warning in result.warnings)

    def test_missing_trigger_warning(self, registry):
        definition = build_workflow("no-trigger", [{"id": "a", "type": "record"}])

        result = validator.check(definition, registry)
        assert result.is_valid
        assert "Workflow has no trigger node" in result.warnings
