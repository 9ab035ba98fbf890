"""
Tests for Graph construction: registry, eager validation and next_nodes.
"""

import pytest
from pydantic import ValidationError

from wavegraph.errors import DuplicateNodeError, EdgeDecisionError, UnknownNodeError
from wavegraph.graph import END, START, EdgeCondition, EdgeSpec, Graph, NodeSpec


def noop(ctx):
    return {}


def make_graph(*names: str) -> Graph:
    graph = Graph("test")
    for name in names:
        graph.add_node(name, noop)
    return graph


# ---------------------------------------------------------------------------
# Node registry
# ---------------------------------------------------------------------------


class TestNodeRegistry:
    def test_add_node_is_chainable(self):
        graph = Graph("g")
        assert graph.add_node("a", noop) is graph
        assert "a" in graph
        assert len(graph) == 1

    def test_add_node_accepts_node_spec(self):
        spec = NodeSpec(name="a", operation=noop, max_retries=2, timeout=1.5)
        graph = Graph().add_node(spec)
        assert graph.get_node("a") is spec

    def test_policy_kwargs_build_node_spec(self):
        graph = Graph().add_node("a", noop, max_retries=3, timeout=0.5, output_keys=["x"])
        node = graph.get_node("a")
        assert node.max_retries == 3
        assert node.max_attempts == 4
        assert node.timeout == 0.5
        assert node.output_keys == ["x"]

    def test_duplicate_name_rejected(self):
        graph = make_graph("a")
        with pytest.raises(DuplicateNodeError) as exc_info:
            graph.add_node("a", noop)
        assert exc_info.value.node_name == "a"

    def test_duplicate_is_a_value_error(self):
        graph = make_graph("a")
        with pytest.raises(ValueError):
            graph.add_node("a", noop)

    def test_missing_operation_rejected(self):
        with pytest.raises(TypeError):
            Graph().add_node("a")

    def test_spec_plus_policy_rejected(self):
        spec = NodeSpec(name="a", operation=noop)
        with pytest.raises(TypeError):
            Graph().add_node(spec, max_retries=1)

    @pytest.mark.parametrize("name", [START, END, "", "   "])
    def test_reserved_or_blank_names_rejected(self, name):
        with pytest.raises(ValidationError):
            NodeSpec(name=name, operation=noop)

    def test_negative_retries_rejected(self):
        with pytest.raises(ValidationError):
            NodeSpec(name="a", operation=noop, max_retries=-1)

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValidationError):
            NodeSpec(name="a", operation=noop, timeout=0)

    def test_node_spec_is_immutable(self):
        spec = NodeSpec(name="a", operation=noop)
        with pytest.raises(ValidationError):
            spec.max_retries = 5


# ---------------------------------------------------------------------------
# Edge registration
# ---------------------------------------------------------------------------


class TestEdgeRegistration:
    def test_unknown_target_rejected_eagerly(self):
        graph = make_graph("a")
        with pytest.raises(UnknownNodeError) as exc_info:
            graph.add_edge("a", "b")
        assert exc_info.value.node_name == "b"

    def test_unknown_source_rejected_eagerly(self):
        graph = make_graph("b")
        with pytest.raises(UnknownNodeError):
            graph.add_edge("a", "b")

    def test_unknown_conditional_source_rejected(self):
        graph = make_graph("b")
        with pytest.raises(UnknownNodeError):
            graph.add_conditional_edge("a", lambda s: "b")

    def test_unknown_declared_target_rejected(self):
        graph = make_graph("a", "b")
        with pytest.raises(UnknownNodeError):
            graph.add_conditional_edge("a", lambda s: "b", targets=["b", "c"])

    def test_sentinels_allowed(self):
        graph = make_graph("a").add_edge(START, "a").add_edge("a", END)
        assert [e.target for e in graph.edges] == ["a", END]

    def test_end_cannot_be_source(self):
        graph = make_graph("a")
        with pytest.raises(ValueError):
            graph.add_edge(END, "a")

    def test_start_cannot_be_target(self):
        graph = make_graph("a")
        with pytest.raises(ValueError):
            graph.add_edge("a", START)

    def test_edge_spec_shape_validation(self):
        with pytest.raises(ValidationError):
            EdgeSpec(source="a")
        with pytest.raises(ValidationError):
            EdgeSpec(source="a", condition=EdgeCondition.CONDITIONAL)
        with pytest.raises(ValidationError):
            EdgeSpec(source="a", target="b", decide=lambda s: "b")


# ---------------------------------------------------------------------------
# next_nodes
# ---------------------------------------------------------------------------


class TestNextNodes:
    def test_static_fan_out(self):
        graph = make_graph("a", "b", "c").add_edge("a", "b").add_edge("a", "c")
        assert graph.next_nodes("a", {}) == ["b", "c"]

    def test_no_outgoing_edges(self):
        graph = make_graph("a")
        assert graph.next_nodes("a", {}) == []

    def test_static_and_conditional_deduplicated(self):
        graph = (
            make_graph("a", "b")
            .add_edge("a", "b")
            .add_conditional_edge("a", lambda s: "b")
        )
        assert graph.next_nodes("a", {}) == ["b"]

    def test_conditional_multi_result_flattened_and_deduplicated(self):
        graph = make_graph("a", "b", "c").add_conditional_edge("a", lambda s: ["b", "c", "b"])
        assert graph.next_nodes("a", {}) == ["b", "c"]

    def test_decision_reads_state(self):
        graph = make_graph("a", "left", "right").add_conditional_edge(
            "a", lambda s: "left" if s["flag"] else "right"
        )
        assert graph.next_nodes("a", {"flag": True}) == ["left"]
        assert graph.next_nodes("a", {"flag": False}) == ["right"]

    def test_end_and_none_produce_no_successor(self):
        graph = (
            make_graph("a", "b")
            .add_conditional_edge("a", lambda s: END)
            .add_conditional_edge("b", lambda s: None)
        )
        assert graph.next_nodes("a", {}) == []
        assert graph.next_nodes("b", {}) == []

    def test_unknown_decision_raises(self):
        graph = make_graph("a").add_conditional_edge("a", lambda s: "ghost")
        with pytest.raises(UnknownNodeError) as exc_info:
            graph.next_nodes("a", {})
        assert exc_info.value.node_name == "ghost"

    def test_decision_outside_declared_targets_raises(self):
        graph = make_graph("a", "b", "c").add_conditional_edge(
            "a", lambda s: "c", targets=["b"]
        )
        with pytest.raises(UnknownNodeError):
            graph.next_nodes("a", {})

    @pytest.mark.parametrize("decision", [42, {"b": 1}, ["b", 3]])
    def test_malformed_decision_raises(self, decision):
        graph = make_graph("a", "b").add_conditional_edge("a", lambda s: decision)
        with pytest.raises(EdgeDecisionError):
            graph.next_nodes("a", {})

    def test_decide_exception_wrapped(self):
        def broken(state):
            raise KeyError("route")

        graph = make_graph("a", "b").add_conditional_edge("a", broken)
        with pytest.raises(EdgeDecisionError) as exc_info:
            graph.next_nodes("a", {})
        assert isinstance(exc_info.value.__cause__, KeyError)


# ---------------------------------------------------------------------------
# Structural analysis
# ---------------------------------------------------------------------------


class TestValidate:
    def test_sound_graph(self):
        graph = make_graph("a", "b").add_edge(START, "a").add_edge("a", "b")
        assert graph.validate() == []

    def test_missing_start_node(self):
        graph = make_graph("a")
        assert graph.validate("zzz") == ["Start node 'zzz' not found"]

    def test_no_edges_from_start(self):
        graph = make_graph("a")
        assert "No edges leave START" in graph.validate()

    def test_unreachable_node_reported(self):
        graph = make_graph("a", "b", "orphan").add_edge("a", "b")
        assert graph.validate("a") == ["Node 'orphan' is unreachable from 'a'"]

    def test_declared_targets_count_as_reachable(self):
        graph = make_graph("a", "b", "c").add_conditional_edge(
            "a", lambda s: "b", targets=["b", "c"]
        )
        assert graph.validate("a") == []

    def test_reachability_skipped_for_undeclared_decisions(self):
        graph = make_graph("a", "b", "orphan").add_conditional_edge("a", lambda s: "b")
        assert graph.validate("a") == []

    def test_fan_out_output_key_overlap_reported(self):
        graph = (
            Graph()
            .add_node("a", noop)
            .add_node("b", noop, output_keys=["result"])
            .add_node("c", noop, output_keys=["result"])
            .add_edge("a", "b")
            .add_edge("a", "c")
        )
        errors = graph.validate("a")
        assert len(errors) == 1
        assert "'b' and 'c' both write to 'result'" in errors[0]

    def test_detect_fan_out_and_fan_in(self):
        graph = (
            make_graph("a", "b1", "b2", "c")
            .add_edge("a", "b1")
            .add_edge("a", "b2")
            .add_edge("b1", "c")
            .add_edge("b2", "c")
        )
        assert graph.detect_fan_out_nodes() == {"a": ["b1", "b2"]}
        assert graph.detect_fan_in_nodes() == {"c": ["b1", "b2"]}
