"""Tests for flattening, expanding and contracting nested graphs."""

import pytest

from nodeflow._graph import FlattenedGraph, contract_node, expand_node, flatten_node, nested_graph
from nodeflow._store import Edge, Graph, GraphStore, Node, NodeKind


def _graph(graph_id: str, nodes: list[Node], edges: list[Edge], out: str = "out") -> Graph:
    return Graph(id=graph_id, nodes={n.id: n for n in nodes}, edges={e.id: e for e in edges}, out=out)


@pytest.fixture
def store() -> GraphStore:
    leaf = _graph("leaf", [Node("out", value=1)], [])
    middle = _graph(
        "middle",
        [Node("inner", kind=NodeKind.REF, ref="leaf"), Node("out", kind=NodeKind.SCRIPT)],
        [Edge("inner", "out")],
    )
    doubler = _graph(
        "doubler",
        [
            Node("x", kind=NodeKind.ARG, value="x"),
            Node("double", kind=NodeKind.SCRIPT),
            Node("out", kind=NodeKind.SCRIPT),
        ],
        [Edge("x", "double"), Edge("double", "out")],
    )
    return GraphStore([leaf, middle, doubler])


@pytest.fixture
def main() -> Graph:
    return _graph(
        "main",
        [Node("p", value=1), Node("add", kind=NodeKind.REF, ref="doubler"), Node("out", kind=NodeKind.RETURN)],
        [Edge("p", "add", "x"), Edge("add", "out")],
    )


class TestNestedGraph:
    def test_inline_graph_wins(self, store: GraphStore) -> None:
        inline = Graph(id="inline")
        node = Node("n", kind=NodeKind.REF, ref="leaf", graph=inline)
        assert nested_graph(node, store) is inline

    def test_lookup_by_reference(self, store: GraphStore) -> None:
        assert nested_graph(Node("n", kind=NodeKind.REF, ref="leaf"), store) is store["leaf"]

    def test_non_reference_node(self, store: GraphStore) -> None:
        assert nested_graph(Node("n", value=1), store) is None

    def test_unresolvable(self) -> None:
        assert nested_graph(Node("n", kind=NodeKind.EXECUTABLE, ref="nowhere"), {}) is None


class TestFlattenNode:
    def test_zero_levels_is_identity(self, store: GraphStore) -> None:
        node = Node("m", kind=NodeKind.REF, ref="middle")
        assert flatten_node(node, 0, store) is node

    def test_non_reference_is_unchanged(self, store: GraphStore) -> None:
        node = Node("v", value=3)
        assert flatten_node(node, 2, store) is node

    def test_empty_graph_is_unchanged(self) -> None:
        node = Node("e", kind=NodeKind.REF, graph=Graph(id="empty"))
        assert flatten_node(node, 1) is node

    def test_unresolvable_is_unchanged(self) -> None:
        node = Node("m", kind=NodeKind.REF, ref="nowhere")
        assert flatten_node(node, 1, GraphStore()) is node

    def test_one_level_qualifies_ids(self, store: GraphStore) -> None:
        flat = flatten_node(Node("m", kind=NodeKind.REF, ref="middle"), 1, store)
        assert isinstance(flat, FlattenedGraph)
        assert set(flat.nodes) == {"m/inner", "m/out"}
        assert list(flat.edges) == ["m/inner->m/out:value"]
        assert flat.out == "m/out"
        assert flat.nodes["m/inner"].id == "m/inner"

    def test_two_levels_inline_nested_contents(self, store: GraphStore) -> None:
        flat = flatten_node(Node("m", kind=NodeKind.REF, ref="middle"), 2, store)
        assert isinstance(flat, FlattenedGraph)
        assert set(flat.nodes) == {"m/inner", "m/out", "m/inner/out"}

    def test_node_count_never_decreases(self, store: GraphStore) -> None:
        node = Node("m", kind=NodeKind.REF, ref="middle")
        counts = []
        for levels in range(4):
            flat = flatten_node(node, levels, store)
            counts.append(len(flat.nodes) if isinstance(flat, FlattenedGraph) else 1)
        assert counts == sorted(counts)

    def test_instances_do_not_alias(self, store: GraphStore) -> None:
        first = flatten_node(Node("a", kind=NodeKind.REF, ref="leaf"), 1, store)
        second = flatten_node(Node("b", kind=NodeKind.REF, ref="leaf"), 1, store)
        assert isinstance(first, FlattenedGraph)
        assert isinstance(second, FlattenedGraph)
        assert set(first.nodes).isdisjoint(second.nodes)

    def test_as_graph(self, store: GraphStore) -> None:
        flat = flatten_node(Node("m", kind=NodeKind.REF, ref="middle"), 1, store)
        assert isinstance(flat, FlattenedGraph)
        graph = flat.as_graph()
        assert graph.out == "m/out"
        assert graph.edges_in("m/out")[0].source == "m/inner"


class TestExpandNode:
    def test_rewires_inputs_and_consumers(self, main: Graph, store: GraphStore) -> None:
        expanded, selection = expand_node(main, "add", store)
        assert selection == ["add/out"]
        assert set(expanded.nodes) == {"p", "out", "add/double", "add/out"}
        assert [e.source for e in expanded.edges_in("add/double")] == ["p"]
        assert [e.source for e in expanded.edges_in("out")] == ["add/out"]
        assert "add" in main.nodes

    def test_output_node_moves(self, store: GraphStore) -> None:
        graph = _graph("g", [Node("r", kind=NodeKind.REF, ref="leaf")], [], out="r")
        expanded, selection = expand_node(graph, "r", store)
        assert expanded.out == "r/out"
        assert selection == ["r/out"]

    def test_clashing_ids_are_suffixed(self, store: GraphStore) -> None:
        graph = _graph(
            "g",
            [Node("r", kind=NodeKind.REF, ref="leaf"), Node("r/out", value=0)],
            [],
            out="r/out",
        )
        expanded, selection = expand_node(graph, "r", store)
        assert selection == ["r/out_1"]
        assert expanded.nodes["r/out"].value == 0
        assert expanded.nodes["r/out_1"].value == 1

    def test_non_reference_declines(self, main: Graph, store: GraphStore) -> None:
        assert expand_node(main, "p", store) == (main, ["p"])


class TestContractNode:
    def test_contract_closure(self) -> None:
        graph = _graph(
            "g",
            [Node("a", value=1), Node("b", kind=NodeKind.SCRIPT), Node("out", kind=NodeKind.RETURN)],
            [Edge("a", "b"), Edge("b", "out")],
        )
        contracted, selection = contract_node(graph, "b")
        assert selection == ["b"]
        assert set(contracted.nodes) == {"b", "out"}
        ref = contracted.nodes["b"]
        assert ref.kind == NodeKind.REF
        assert ref.graph is not None
        assert set(ref.graph.nodes) == {"a", "b"}
        assert ref.graph.out == "b"
        assert [e.source for e in contracted.edges_in("out")] == ["b"]

    def test_expand_then_contract(self, main: Graph, store: GraphStore) -> None:
        expanded, _ = expand_node(main, "add", store)
        contracted, selection = contract_node(expanded, "add/out")
        assert selection == ["add"]
        assert set(contracted.nodes) == {"p", "add", "out"}
        ref = contracted.nodes["add"]
        assert ref.graph is not None
        assert set(ref.graph.nodes) == {"p", "double", "out"}
        assert ref.graph.nodes["p"].kind == NodeKind.ARG
        assert contracted.edges_in("add") == (Edge("p", "add", "p"),)
        assert [e.source for e in contracted.edges_in("out")] == ["add"]

    def test_single_node_declines(self) -> None:
        graph = _graph("g", [Node("a", value=1)], [], out="a")
        assert contract_node(graph, "a") == (graph, ["a"])

    def test_outside_consumers_decline(self) -> None:
        graph = _graph(
            "g",
            [Node("a", value=1), Node("b", kind=NodeKind.SCRIPT), Node("out", kind=NodeKind.RETURN)],
            [Edge("a", "b"), Edge("a", "out", "other"), Edge("b", "out")],
        )
        contracted, selection = contract_node(graph, "b")
        assert contracted is graph
        assert selection == ["b"]

    def test_output_node_moves(self) -> None:
        graph = _graph("g", [Node("a", value=1), Node("b", kind=NodeKind.SCRIPT)], [Edge("a", "b")], out="b")
        contracted, _ = contract_node(graph, "b")
        assert contracted.out == "b"
        assert contracted.nodes["b"].kind == NodeKind.REF
