"""Flatten, expand and contract nested graphs.

These are editor-facing transformations: they never evaluate anything and
always return new graphs. Inlined node ids are qualified with the id of the
reference node that owned them, so two instances of the same reusable graph
never alias.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from nodeflow._store import Edge, Graph, Node, NodeKind

from ._algorithms import ancestor_graph, append_graph_id

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FlattenedGraph:
    """Nodes and edges of a reference node with nested graphs inlined.

    Attributes:
        id: Id of the reference node that was flattened.
        out: Qualified id of the nested graph's output node.
        nodes: Inlined nodes keyed by qualified id. Nested reference nodes are
            kept alongside their own inlined contents.
        edges: Inlined edges keyed by edge id, endpoints qualified.

    """

    id: str
    out: str
    nodes: dict[str, Node] = field(default_factory=dict)
    edges: dict[str, Edge] = field(default_factory=dict)

    def as_graph(self) -> Graph:
        """View the flattened contents as a standalone graph."""
        return Graph(id=self.id, nodes=dict(self.nodes), edges=dict(self.edges), out=self.out)


def nested_graph(node: Node, graphs: Mapping[str, Graph] | None = None) -> Graph | None:
    """Resolve the graph a reference node invokes, inline first, then by id."""
    if not node.references_graph():
        return None
    if node.graph is not None:
        return node.graph
    if node.ref is not None and graphs is not None:
        return graphs.get(node.ref)
    return None


def flatten_node(
    node: Node,
    levels: int = 1,
    graphs: Mapping[str, Graph] | None = None,
) -> Node | FlattenedGraph:
    """Inline up to ``levels`` levels of nested graphs.

    Every inlined id is qualified with ``append_graph_id(node.id, inner_id)``.
    Increasing ``levels`` only ever adds nodes.

    Args:
        node: The node to flatten.
        levels: Number of nesting levels to inline.
        graphs: Lookup table for reference nodes without an inline graph.

    Returns:
        ``node`` itself when ``levels <= 0``, when it does not reference a
        graph, or when the referenced graph is empty or unresolvable;
        otherwise a FlattenedGraph.

    """
    inner = nested_graph(node, graphs)
    if levels <= 0 or inner is None or not inner.nodes:
        return node

    qualify = {inner_id: append_graph_id(node.id, inner_id) for inner_id in inner.nodes}
    flat = FlattenedGraph(id=node.id, out=qualify.get(inner.out, append_graph_id(node.id, inner.out)))

    for inner_id, inner_node in inner.nodes.items():
        renamed = inner_node.with_id(qualify[inner_id])
        flat.nodes[renamed.id] = renamed
        child = flatten_node(renamed, levels - 1, graphs)
        if isinstance(child, FlattenedGraph):
            flat.nodes.update(child.nodes)
            flat.edges.update(child.edges)

    for edge in inner.edges.values():
        renamed_edge = edge.renamed(qualify)
        flat.edges[renamed_edge.id] = renamed_edge

    return flat


def _unique_id(base: str, taken: Iterable[str]) -> str:
    used = set(taken)
    if base not in used:
        return base
    suffix = 1
    while f"{base}_{suffix}" in used:
        suffix += 1
    return f"{base}_{suffix}"


def expand_node(
    graph: Graph,
    node_id: str,
    graphs: Mapping[str, Graph] | None = None,
) -> tuple[Graph, list[str]]:
    """Replace a reference node by its inlined contents.

    Inputs wired into the reference node are rewired straight to the
    consumers of the matching ``arg`` nodes inside, which are dropped.
    Consumers of the reference node are rewired to the inlined output node.

    Args:
        graph: The graph being edited.
        node_id: The reference node to expand.
        graphs: Lookup table for reference nodes without an inline graph.

    Returns:
        The updated graph and the ids the caller should select. Nodes that
        cannot be expanded yield the unchanged graph and ``[node_id]``.

    """
    node = graph.nodes[node_id]
    flat = flatten_node(node, 1, graphs)
    if not isinstance(flat, FlattenedGraph):
        return graph, [node_id]

    outside = set(graph.nodes) - {node_id}
    rename = {qid: _unique_id(qid, outside) for qid in flat.nodes}
    nodes = {rename[qid]: n.with_id(rename[qid]) for qid, n in flat.nodes.items()}
    edges = [e.renamed(rename) for e in flat.edges.values()]

    inputs = {e.slot: e.source for e in graph.edges_in(node_id)}
    bound_args = {
        nid
        for nid, n in nodes.items()
        if n.kind == NodeKind.ARG and isinstance(n.value, str) and n.value in inputs
    }
    rewired: list[Edge] = []
    for edge in edges:
        if edge.source in bound_args:
            rewired.append(replace(edge, source=inputs[nodes[edge.source].value]))
        elif edge.target not in bound_args:
            rewired.append(edge)

    new_out = rename[flat.out] if flat.out in rename else flat.out
    rewired.extend(replace(e, source=new_out) for e in graph.edges_out(node_id))

    expanded = graph.updated(
        removed_nodes=[node_id],
        added_nodes=[n for nid, n in nodes.items() if nid not in bound_args],
        added_edges=rewired,
    )
    if graph.out == node_id:
        expanded = replace(expanded, out=new_out)
    logger.debug(f"Expanded '{node_id}' into {len(nodes) - len(bound_args)} nodes")
    return expanded, [new_out]


def _strip_prefix(node_id: str, prefix: str) -> str:
    return node_id.removeprefix(prefix + "/")


def _contract_unit(graph: Graph, node_id: str) -> tuple[str, set[str]]:
    """Pick the nodes to gather and the id of the resulting reference node.

    Ids qualified as ``<prefix>/<inner>`` (as produced by ``expand_node``)
    contract back into ``<prefix>``. Any other node contracts together with
    its whole dependency closure, keeping its own id.
    """
    closure = set(ancestor_graph(node_id, graph).nodes)
    if "/" not in node_id:
        return node_id, closure
    prefix = node_id.rsplit("/", 1)[0]
    unit = {nid for nid in closure if nid.startswith(prefix + "/")}
    return _unique_id(prefix, set(graph.nodes) - unit), unit


def contract_node(graph: Graph, node_id: str) -> tuple[Graph, list[str]]:
    """Gather a node and the nodes feeding it into a single reference node.

    The unit is contractible when it holds at least two nodes and only
    ``node_id`` has consumers outside of it. Inputs entering the unit from
    outside become ``arg`` nodes inside and inputs of the new reference node.

    Args:
        graph: The graph being edited.
        node_id: The node that becomes the output of the nested graph.

    Returns:
        The updated graph and the ids the caller should select. When the
        nodes do not form a contractible unit the graph is returned unchanged
        with ``[node_id]``.

    """
    new_id, unit = _contract_unit(graph, node_id)
    if len(unit) < 2:
        return graph, [node_id]

    leaving = [e for e in graph.edges.values() if e.source in unit and e.target not in unit]
    if any(e.source != node_id for e in leaving):
        logger.debug(f"Cannot contract '{node_id}': inner nodes have outside consumers")
        return graph, [node_id]

    prefix = node_id.rsplit("/", 1)[0] if "/" in node_id else ""
    local = {nid: _strip_prefix(nid, prefix) if prefix else nid for nid in unit}

    inner_nodes = {local[nid]: graph.nodes[nid].with_id(local[nid]) for nid in unit}
    inner_edges = [e.renamed(local) for e in graph.edges.values() if e.source in unit and e.target in unit]

    outer_edges: list[Edge] = []
    arg_names: dict[str, str] = {}
    for edge in graph.edges.values():
        if edge.target not in unit or edge.source in unit:
            continue
        if edge.source not in arg_names:
            name = _unique_id(edge.source.rsplit("/", 1)[-1], [*inner_nodes, *arg_names.values()])
            arg_names[edge.source] = name
            inner_nodes[name] = Node(id=name, kind=NodeKind.ARG, value=name)
            outer_edges.append(Edge(source=edge.source, target=new_id, slot=name))
        inner_edges.append(Edge(source=arg_names[edge.source], target=local[edge.target], slot=edge.slot))

    outer_edges.extend(replace(e, source=new_id) for e in leaving)

    source = graph.nodes[node_id]
    ref_node = Node(
        id=new_id,
        kind=NodeKind.REF,
        name=source.name,
        graph=Graph(
            id=new_id,
            nodes=inner_nodes,
            edges={e.id: e for e in inner_edges},
            out=local[node_id],
            name=source.name,
        ),
    )
    contracted = graph.updated(removed_nodes=unit, added_nodes=[ref_node], added_edges=outer_edges)
    if graph.out == node_id:
        contracted = replace(contracted, out=new_id)
    logger.debug(f"Contracted {len(unit)} nodes into '{new_id}'")
    return contracted, [new_id]
