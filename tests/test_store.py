"""Tests for the graph store: records, normalization and validation."""

import pytest
from pydantic import ValidationError

from nodeflow._store import (
    Edge,
    Graph,
    GraphStore,
    Node,
    NodeKind,
    SavedGraph,
    base_graph,
    base_node,
    dump_graph,
    from_saved,
    to_saved,
    validate_graph,
)


@pytest.fixture
def raw_graph() -> dict:
    return {
        "id": "main",
        "nodes": [
            {"id": "a", "value": 2},
            {"id": "b", "kind": "script"},
            {"id": "out", "kind": "return"},
        ],
        "edges": [
            {"from": "a", "to": "b"},
            {"from": "b", "to": "out", "as": "value"},
        ],
    }


class TestEdge:
    def test_default_slot(self) -> None:
        edge = Edge("a", "b")
        assert edge.slot == "value"
        assert edge.id == "a->b:value"

    def test_renamed(self) -> None:
        assert Edge("a", "b", "x").renamed({"a": "p/a"}) == Edge("p/a", "b", "x")


class TestGraph:
    def test_incoming_edges_in_declaration_order(self) -> None:
        edges = [Edge("a", "c", "x"), Edge("b", "c", "y")]
        graph = Graph(id="g", nodes={n: Node(n) for n in "abc"}, edges={e.id: e for e in edges})
        assert graph.edges_in("c") == tuple(edges)
        assert graph.edges_out("a") == (edges[0],)
        assert graph.edges_in("a") == ()

    def test_get_node(self) -> None:
        graph = Graph(id="g", nodes={"a": Node("a")})
        assert graph.get_node("a").id == "a"
        assert "a" in graph
        assert len(graph) == 1
        with pytest.raises(KeyError):
            graph.get_node("missing")

    def test_updated_removes_touching_edges(self) -> None:
        edge = Edge("a", "b")
        graph = Graph(id="g", nodes={"a": Node("a"), "b": Node("b")}, edges={edge.id: edge})
        updated = graph.updated(removed_nodes=["a"], added_nodes=[Node("c")], added_edges=[Edge("c", "b")])
        assert set(updated.nodes) == {"b", "c"}
        assert list(updated.edges) == ["c->b:value"]
        assert set(graph.nodes) == {"a", "b"}

    def test_dependency_graph(self) -> None:
        edge = Edge("a", "b")
        graph = Graph(id="g", nodes={"a": Node("a"), "b": Node("b"), "c": Node("c")}, edges={edge.id: edge})
        deps = graph.dependency_graph()
        assert deps.nodes == frozenset({"a", "b", "c"})
        assert deps.validate() == []


class TestGraphStore:
    def test_add_and_lookup(self) -> None:
        store = GraphStore([Graph(id="g1")])
        store.add(Graph(id="g2"))
        assert set(store) == {"g1", "g2"}
        assert store["g2"].id == "g2"
        assert len(store) == 2

    def test_remove(self) -> None:
        store = GraphStore([Graph(id="g1")])
        store.remove("g1")
        store.remove("g1")
        assert "g1" not in store


class TestNormalization:
    def test_base_graph_fills_defaults(self, raw_graph: dict) -> None:
        graph = base_graph(raw_graph)
        assert graph.out == "out"
        assert graph.metadata == {}
        assert graph.nodes["a"].kind == NodeKind.VALUE
        assert graph.nodes["b"].kind == NodeKind.SCRIPT
        assert graph.edges["a->b:value"] == Edge("a", "b", "value")

    def test_base_graph_is_idempotent(self, raw_graph: dict) -> None:
        graph = base_graph(raw_graph)
        assert base_graph(graph) is graph
        assert base_graph(dump_graph(graph)) == graph

    def test_base_node_is_idempotent(self) -> None:
        node = base_node({"id": "n", "kind": "extern", "value": "add"})
        assert node.kind == NodeKind.EXTERN
        assert base_node(node) is node

    def test_nodes_keyed_by_mapping_key(self) -> None:
        graph = base_graph({"id": "g", "nodes": {"a": {"value": 1}}})
        assert graph.nodes["a"].id == "a"
        assert graph.nodes["a"].value == 1

    def test_kind_inferred_for_nested_graph(self) -> None:
        node = base_node({"id": "sub", "nodes": [{"id": "out", "value": 1}]})
        assert node.kind == NodeKind.REF
        assert node.graph is not None
        assert node.graph.id == "sub"
        assert node.graph.out == "out"

    def test_kind_inferred_for_reference(self) -> None:
        assert base_node({"id": "r", "ref": "lib/adder"}).kind == NodeKind.REF

    def test_unknown_kind_survives(self) -> None:
        node = base_node({"id": "n", "kind": "teleport"})
        assert node.kind == "teleport"
        assert not isinstance(node.kind, NodeKind)

    def test_malformed_record(self) -> None:
        with pytest.raises(ValidationError):
            base_graph({"nodes": []})


class TestSavedForm:
    def test_round_trip_is_lossless(self, raw_graph: dict) -> None:
        graph = base_graph(raw_graph)
        nested = Node(
            "sub",
            kind=NodeKind.REF,
            graph=Graph(
                id="adder",
                name="Adder",
                description="Adds one",
                nodes={"out": Node("out", value=3)},
                metadata={"k": 1},
            ),
            name="my ref",
            metadata={"x": 1},
        )
        graph = graph.updated(added_nodes=[nested])
        restored = from_saved(to_saved(graph))
        assert restored == graph
        inline = restored.nodes["sub"].graph
        assert inline is not None
        assert (inline.id, inline.name, inline.description, inline.metadata) == ("adder", "Adder", "Adds one", {"k": 1})
        assert restored.nodes["sub"].name == "my ref"

    def test_inline_graph_persists_as_its_own_record(self) -> None:
        inner = Graph(id="adder", name="Adder", nodes={"out": Node("out", value=3)})
        graph = Graph(id="g", nodes={"out": Node("out", kind=NodeKind.REF, graph=inner, name="call")})
        data = dump_graph(graph)
        assert data["nodes"]["out"]["name"] == "call"
        assert data["nodes"]["out"]["graph"]["id"] == "adder"
        assert data["nodes"]["out"]["graph"]["name"] == "Adder"
        assert base_graph(data) == graph

    def test_dump_uses_persisted_names(self, raw_graph: dict) -> None:
        data = dump_graph(base_graph(raw_graph))
        edge = data["edges"]["a->b:value"]
        assert edge == {"from": "a", "to": "b", "as": "value"}

    def test_saved_graph_validates_json(self) -> None:
        saved = SavedGraph.model_validate_json('{"id": "g", "nodes": [{"id": "out", "value": 1}]}')
        assert from_saved(saved).nodes["out"].value == 1


class TestValidateGraph:
    def test_valid_graph(self, raw_graph: dict) -> None:
        assert validate_graph(base_graph(raw_graph)) == []

    def test_missing_out(self) -> None:
        graph = Graph(id="g", nodes={"a": Node("a")}, out="missing")
        assert validate_graph(graph) == ["Output node 'missing' does not exist"]

    def test_dangling_edge(self) -> None:
        edge = Edge("ghost", "out")
        graph = Graph(id="g", nodes={"out": Node("out")}, edges={edge.id: edge})
        assert "Edge 'ghost->out:value' references missing nodes: ghost" in validate_graph(graph)

    def test_unresolvable_reference(self) -> None:
        graph = Graph(id="g", nodes={"out": Node("out", kind=NodeKind.REF, ref="nowhere")})
        assert validate_graph(graph, GraphStore()) == ["Node 'out' references unknown graph 'nowhere'"]

    def test_resolvable_reference(self) -> None:
        graph = Graph(id="g", nodes={"out": Node("out", kind=NodeKind.REF, ref="lib")})
        assert validate_graph(graph, GraphStore([Graph(id="lib")])) == []

    def test_nested_problems_are_prefixed(self) -> None:
        inner = Graph(id="sub", nodes={"a": Node("a")})
        graph = Graph(id="g", nodes={"out": Node("out", kind=NodeKind.REF, graph=inner)})
        assert validate_graph(graph) == ["out: Output node 'out' does not exist"]

    def test_cycle(self) -> None:
        edges = [Edge("a", "b"), Edge("b", "a"), Edge("b", "out")]
        graph = Graph(id="g", nodes={n: Node(n) for n in ("a", "b", "out")}, edges={e.id: e for e in edges})
        assert validate_graph(graph) == ["Graph contains a cycle through: a, b, out"]
