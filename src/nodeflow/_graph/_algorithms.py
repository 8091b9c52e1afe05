"""Graph algorithms for dependency closure and traversal."""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import replace
from typing import TYPE_CHECKING

from nodeflow._errors import MissingGraphError

if TYPE_CHECKING:
    from collections.abc import Callable, Collection, Hashable, Mapping

    from nodeflow._store import Edge, Graph


def partial_topological_order[T: Hashable](successors: Mapping[T, Collection[T]]) -> list[T]:
    """Order as many nodes as possible with dependencies before dependents.

    Nodes on a cycle, and everything downstream of one, are left out.

    Args:
        successors: Mapping from node to collection of nodes that depend on it.
            An edge (a -> b) means "b depends on a".

    """
    indegree: defaultdict[T, int] = defaultdict(int)
    for node, deps in successors.items():
        indegree[node] = indegree.get(node, 0)
        for dep in deps:
            indegree[dep] += 1

    queue = deque([node for node, deg in indegree.items() if deg == 0])
    order: list[T] = []

    while queue:
        node = queue.popleft()
        order.append(node)
        for successor in successors.get(node, []):
            indegree[successor] -= 1
            if indegree[successor] == 0:
                queue.append(successor)

    return order


def append_graph_id(graph_id: str, node_id: str) -> str:
    """Qualify a node id with the id of the graph instance that owns it.

    Example:
        >>> append_graph_id("main/adder", "out")
        'main/adder/out'

    """
    return f"{graph_id}/{node_id}"


def bfs(graph: Graph, visit: Callable[[str, int], object]) -> Callable[..., list[str]]:
    """Build a breadth-first traversal over dependencies.

    The returned function takes one or more root node ids and calls
    ``visit(node_id, level)`` exactly once per node reachable by following
    incoming edges. Roots are at level 0. Nodes on the same level are visited
    in edge declaration order. Each call starts from a fresh visited set, so
    the traversal can be reused.

    Args:
        graph: The graph to traverse.
        visit: Callback invoked with each node id and its level.

    Returns:
        A function ``traverse(*roots)`` returning the visited ids in order.

    """

    def traverse(*roots: str) -> list[str]:
        seen: set[str] = set()
        order: list[str] = []
        queue: deque[tuple[str, int]] = deque()
        for root in roots:
            if root not in seen:
                seen.add(root)
                queue.append((root, 0))
        while queue:
            node_id, level = queue.popleft()
            visit(node_id, level)
            order.append(node_id)
            for edge in graph.edges_in(node_id):
                if edge.source not in seen:
                    seen.add(edge.source)
                    queue.append((edge.source, level + 1))
        return order

    return traverse


def _check_reference(graph: Graph, node_id: str, graphs: Mapping[str, Graph]) -> None:
    node = graph.nodes[node_id]
    if not node.references_graph() or node.graph is not None:
        return
    if node.ref is None:
        msg = "Reference node names no graph"
        raise MissingGraphError(node_id, graph.id, msg)
    if node.ref != graph.id and node.ref not in graphs:
        msg = f"Referenced graph '{node.ref}' cannot be resolved"
        raise MissingGraphError(node_id, graph.id, msg)


def ancestor_graph(node_id: str, graph: Graph, graphs: Mapping[str, Graph] | None = None) -> Graph:
    """Compute the dependency closure of a node as a sub-graph.

    The result holds ``node_id``, every node reachable by following incoming
    edges, and the edges among them in their original declaration order. Its
    ``out`` is ``node_id``. Applying it to its own output yields the same
    node set.

    Args:
        node_id: The node whose dependencies are collected.
        graph: The graph to search.
        graphs: External lookup table for reference nodes. When given, every
            reference node in the closure must name an inline graph, the graph
            itself, or a graph present in the table.

    Returns:
        The minimal sub-graph needed to evaluate ``node_id``.

    Raises:
        KeyError: If ``node_id`` is not a node of ``graph``.
        MissingGraphError: If a reference cannot be resolved through ``graphs``.

    """
    if node_id not in graph.nodes:
        raise KeyError(node_id)

    closure: set[str] = {node_id}
    stack = [node_id]
    while stack:
        current = stack.pop()
        if graphs is not None:
            _check_reference(graph, current, graphs)
        for edge in graph.edges_in(current):
            if edge.source in graph.nodes and edge.source not in closure:
                closure.add(edge.source)
                stack.append(edge.source)

    return replace(
        graph,
        nodes={k: n for k, n in graph.nodes.items() if k in closure},
        edges={k: e for k, e in graph.edges.items() if e.target in closure and e.source in closure},
        out=node_id,
    )


def descendant_graph[R](node_id: str, graph: Graph, transform: Callable[[str, Edge], R]) -> dict[str, R]:
    """Apply ``transform`` to every transitive dependent of a node.

    Dependents are reached by following outgoing edges breadth-first. Each
    dependent is transformed once, with the first edge that reached it.

    Args:
        node_id: The node whose dependents are visited.
        graph: The graph to search.
        transform: Called as ``transform(child_id, incoming_edge)``.

    Returns:
        Mapping from dependent node id to the transform's result.

    """
    results: dict[str, R] = {}
    queue = deque([node_id])
    while queue:
        current = queue.popleft()
        for edge in graph.edges_out(current):
            child = edge.target
            if child == node_id or child in results:
                continue
            results[child] = transform(child, edge)
            queue.append(child)
    return results


def node_levels(graph: Graph, *roots: str) -> dict[int, list[str]]:
    """Group the dependency closure of ``roots`` by breadth-first level."""
    levels: dict[int, list[str]] = {}
    bfs(graph, lambda node_id, level: levels.setdefault(level, []).append(node_id))(*roots)
    return levels

