"""In-memory graph representation and the graph registry."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable

    from nodeflow._graph import DependencyGraph

    from ._node import Edge, Node


@dataclass(frozen=True, slots=True)
class Graph:
    """A computation graph in its working form.

    Graphs are never mutated by the runtime. Editing operations return new
    ``Graph`` instances.

    Attributes:
        id: Graph identifier.
        nodes: Mapping from node id to Node.
        edges: Mapping from edge id to Edge, in declaration order.
        out: Id of the node whose value is the graph's result.
        name: Optional display name.
        description: Optional description.
        metadata: Free-form metadata carried through persistence.

    """

    id: str
    nodes: dict[str, Node] = field(default_factory=dict)
    edges: dict[str, Edge] = field(default_factory=dict)
    out: str = "out"
    name: str | None = None
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    _edges_in: dict[str, tuple[Edge, ...]] = field(init=False, repr=False, compare=False)
    _edges_out: dict[str, tuple[Edge, ...]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        edges_in: defaultdict[str, list[Edge]] = defaultdict(list)
        edges_out: defaultdict[str, list[Edge]] = defaultdict(list)
        for edge in self.edges.values():
            edges_in[edge.target].append(edge)
            edges_out[edge.source].append(edge)
        object.__setattr__(self, "_edges_in", {k: tuple(v) for k, v in edges_in.items()})
        object.__setattr__(self, "_edges_out", {k: tuple(v) for k, v in edges_out.items()})

    def get_node(self, node_id: str) -> Node:
        """Get a node by id.

        Raises:
            KeyError: If no node with that id exists.

        """
        return self.nodes[node_id]

    def edges_in(self, node_id: str) -> tuple[Edge, ...]:
        """Incoming edges of a node (its declared dependencies), in declaration order."""
        return self._edges_in.get(node_id, ())

    def edges_out(self, node_id: str) -> tuple[Edge, ...]:
        """Outgoing edges of a node (its consumers), in declaration order."""
        return self._edges_out.get(node_id, ())

    def dependency_graph(self) -> DependencyGraph[str]:
        """Build a DependencyGraph over the node ids of this graph."""
        from nodeflow._graph import DependencyGraph  # noqa: PLC0415

        return DependencyGraph.from_edges(
            [(e.source, e.target) for e in self.edges.values()],
            nodes=self.nodes,
        )

    def updated(
        self,
        *,
        added_nodes: Iterable[Node] = (),
        added_edges: Iterable[Edge] = (),
        removed_nodes: Iterable[str] = (),
        removed_edges: Iterable[Edge] = (),
    ) -> Graph:
        """Return a copy with nodes and edges removed, then added.

        Removing a node also removes every edge touching it. Edges are matched
        for removal by endpoints and slot.
        """
        gone_nodes = set(removed_nodes)
        gone_edges = set(removed_edges)
        nodes = {k: n for k, n in self.nodes.items() if k not in gone_nodes}
        edges = {
            k: e
            for k, e in self.edges.items()
            if e not in gone_edges and e.source not in gone_nodes and e.target not in gone_nodes
        }
        for node in added_nodes:
            nodes[node.id] = node
        for edge in added_edges:
            edges[edge.id] = edge
        return replace(self, nodes=nodes, edges=edges)

    def __len__(self) -> int:
        """Return the number of nodes in the graph."""
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        """Check if a node exists in the graph."""
        return node_id in self.nodes


class GraphStore(Mapping[str, Graph]):
    """Registry of graphs by id, used to resolve reference nodes."""

    def __init__(self, graphs: Iterable[Graph] = ()) -> None:
        self._graphs: dict[str, Graph] = {}
        for graph in graphs:
            self.add(graph)

    def add(self, graph: Graph) -> Graph:
        """Register (or replace) a graph under its id."""
        self._graphs[graph.id] = graph
        return graph

    def remove(self, graph_id: str) -> None:
        self._graphs.pop(graph_id, None)

    def __getitem__(self, graph_id: str) -> Graph:
        return self._graphs[graph_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._graphs)

    def __len__(self) -> int:
        return len(self._graphs)
