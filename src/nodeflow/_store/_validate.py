"""Static validation of graphs before evaluation."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ._graph import Graph


def validate_graph(graph: Graph, graphs: Mapping[str, Graph] | None = None) -> list[str]:
    """Validate a graph and return a list of error messages.

    Checks for:
    - Edges whose endpoints are not nodes of the graph
    - A missing ``out`` node
    - Reference nodes naming neither an inline graph nor a resolvable graph id
    - Cycles among the graph's edges

    Inline nested graphs are validated recursively; their messages are
    prefixed with the owning node id.

    Args:
        graph: The graph to validate.
        graphs: Lookup table used to resolve ``ref`` payloads.

    Returns:
        List of error messages. Empty list if the graph is valid.

    """
    errors: list[str] = []

    if graph.nodes and graph.out not in graph.nodes:
        errors.append(f"Output node '{graph.out}' does not exist")

    for edge_id, edge in graph.edges.items():
        missing = [end for end in (edge.source, edge.target) if end not in graph.nodes]
        if missing:
            errors.append(f"Edge '{edge_id}' references missing nodes: {', '.join(missing)}")

    for node in graph.nodes.values():
        if not node.references_graph():
            continue
        if node.graph is not None:
            errors.extend(f"{node.id}: {msg}" for msg in validate_graph(node.graph, graphs))
        elif node.ref is None:
            errors.append(f"Node '{node.id}' references no graph")
        elif graphs is None or node.ref not in graphs:
            errors.append(f"Node '{node.id}' references unknown graph '{node.ref}'")

    errors.extend(graph.dependency_graph().validate())
    return errors
