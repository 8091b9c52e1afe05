"""Tests for reading and writing graph files."""

import json
import tomllib
from pathlib import Path

import pytest
from pydantic import ValidationError

from nodeflow._io import _serialize_value, dumps_graph, load_graph, load_graphs, save_graph
from nodeflow._store import Edge, Graph, Node, NodeKind


@pytest.fixture
def graph() -> Graph:
    inner = Graph(
        id="scale",
        name="Scale",
        description="Passes its argument through",
        metadata={"version": 2},
        nodes={"v": Node("v", kind=NodeKind.ARG, value="v"), "out": Node("out", kind=NodeKind.RETURN)},
        edges={"v->out:value": Edge("v", "out")},
    )
    edges = [Edge("a", "s", "v"), Edge("s", "out")]
    return Graph(
        id="main",
        name="Main graph",
        nodes={
            "a": Node("a", value={"gain": 2, "tags": ["x", "y"]}),
            "s": Node("s", kind=NodeKind.REF, graph=inner, name="my scale", metadata={"position": [10, 20]}),
            "out": Node("out", kind=NodeKind.RETURN),
        },
        edges={e.id: e for e in edges},
        metadata={"author": "test"},
    )


class TestSerializeValue:
    def test_drops_none_entries(self) -> None:
        assert _serialize_value({"a": 1, "b": None}) == {"a": 1}

    def test_nested(self) -> None:
        assert _serialize_value({"a": ({"b": None, "c": Path("x")},)}) == {"a": [{"c": "x"}]}


class TestRoundTrip:
    @pytest.mark.parametrize("suffix", [".json", ".toml"])
    def test_save_then_load(self, graph: Graph, tmp_path: Path, suffix: str) -> None:
        path = tmp_path / "nested" / f"main{suffix}"
        save_graph(graph, path)
        assert path.exists()
        assert load_graph(path) == graph

    def test_json_text_uses_persisted_names(self, graph: Graph) -> None:
        data = json.loads(dumps_graph(graph))
        assert data["edges"]["s->out:value"] == {"from": "s", "to": "out", "as": "value"}
        assert "ref" not in data["nodes"]["a"]

    def test_toml_text(self, graph: Graph) -> None:
        data = tomllib.loads(dumps_graph(graph, "toml"))
        assert data["id"] == "main"
        inline = data["nodes"]["s"]["graph"]
        assert inline["id"] == "scale"
        assert inline["nodes"]["v"]["kind"] == "arg"
        assert data["nodes"]["s"]["name"] == "my scale"

    def test_unknown_format(self, graph: Graph) -> None:
        with pytest.raises(ValueError, match="yaml"):
            dumps_graph(graph, "yaml")


class TestLoadGraph:
    def test_minimal_json(self, tmp_path: Path) -> None:
        path = tmp_path / "g.json"
        path.write_text('{"id": "g", "nodes": [{"id": "out", "value": 1}]}')
        graph = load_graph(path)
        assert graph.nodes["out"].kind == NodeKind.VALUE
        assert graph.out == "out"

    def test_toml_edge_list(self, tmp_path: Path) -> None:
        path = tmp_path / "g.toml"
        path.write_text(
            """
id = "g"

[[nodes]]
id = "a"
value = 3

[[nodes]]
id = "out"
kind = "return"

[[edges]]
from = "a"
to = "out"
""",
        )
        graph = load_graph(path)
        assert graph.edges_in("out") == (Edge("a", "out", "value"),)

    def test_unsupported_suffix(self, tmp_path: Path) -> None:
        path = tmp_path / "g.yaml"
        path.write_text("id: g")
        with pytest.raises(ValueError, match="Unsupported graph file type"):
            load_graph(path)

    def test_invalid_record(self, tmp_path: Path) -> None:
        path = tmp_path / "g.json"
        path.write_text('{"nodes": {}}')
        with pytest.raises(ValidationError):
            load_graph(path)


class TestLoadGraphs:
    def test_directory(self, graph: Graph, tmp_path: Path) -> None:
        save_graph(graph, tmp_path / "main.json")
        save_graph(Graph(id="other", nodes={"out": Node("out", value=1)}), tmp_path / "sub" / "other.toml")
        (tmp_path / "notes.txt").write_text("ignored")
        store = load_graphs(tmp_path)
        assert set(store) == {"main", "other"}
        assert store["main"] == graph

    def test_single_file(self, graph: Graph, tmp_path: Path) -> None:
        path = tmp_path / "main.toml"
        save_graph(graph, path)
        assert list(load_graphs(path)) == ["main"]
