"""Graph store: nodes, edges, graphs and their persisted form."""

from ._graph import Graph, GraphStore
from ._node import GRAPH_KINDS, Edge, Node, NodeKind
from ._normalize import SavedEdge, SavedGraph, SavedNode, base_graph, base_node, dump_graph, from_saved, to_saved
from ._validate import validate_graph

__all__ = [
    "GRAPH_KINDS",
    "Edge",
    "Graph",
    "GraphStore",
    "Node",
    "NodeKind",
    "SavedEdge",
    "SavedGraph",
    "SavedNode",
    "base_graph",
    "base_node",
    "dump_graph",
    "from_saved",
    "to_saved",
    "validate_graph",
]
