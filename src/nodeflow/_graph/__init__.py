"""Graph algorithms over computation graphs.

This module contains:
- DependencyGraph[T]: An immutable dependency graph for static cycle checks
- Dependency and dependent closures (ancestor_graph, descendant_graph, bfs)
- Editing transformations of nested graphs (flatten_node, expand_node, contract_node)
"""

from ._algorithms import (
    ancestor_graph,
    append_graph_id,
    bfs,
    descendant_graph,
    node_levels,
    partial_topological_order,
)
from ._dependency_graph import DependencyGraph
from ._flatten import FlattenedGraph, contract_node, expand_node, flatten_node, nested_graph

__all__ = [
    "DependencyGraph",
    "FlattenedGraph",
    "ancestor_graph",
    "append_graph_id",
    "bfs",
    "contract_node",
    "descendant_graph",
    "expand_node",
    "flatten_node",
    "nested_graph",
    "node_levels",
    "partial_topological_order",
]
