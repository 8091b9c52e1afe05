"""Normalization between persisted records and the working graph form.

Persisted graphs use the ``from`` / ``to`` / ``as`` edge field names and may
omit every optional field. ``base_graph`` and ``base_node`` fill in defaults,
and are idempotent: normalizing an already-normalized record returns it
unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ._graph import Graph
from ._node import Edge, Node, NodeKind

logger = logging.getLogger(__name__)

# Fields of the inline-graph shorthand on a node record.
_INLINE_GRAPH_FIELDS = ("nodes", "edges", "out")


def _edge_key(source: str, target: str, slot: str) -> str:
    return Edge(source, target, slot).id


def _nodes_by_id(data: Any) -> Any:
    """Key node lists by id and fill missing ids from mapping keys."""
    if not isinstance(data, Mapping) or "nodes" not in data:
        return data
    nodes = data["nodes"]
    if isinstance(nodes, list):
        nodes = {n["id"]: n for n in nodes}
    if isinstance(nodes, Mapping):
        nodes = {
            key: {**node, "id": node.get("id", key)} if isinstance(node, Mapping) else node
            for key, node in nodes.items()
        }
    return {**data, "nodes": nodes}


class SavedEdge(BaseModel):
    """Persisted edge record."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    source: str = Field(alias="from")
    target: str = Field(alias="to")
    slot: str = Field(default="value", alias="as")


def _edges_by_id(value: Any) -> Any:
    if not isinstance(value, list):
        return value
    edges: dict[str, SavedEdge] = {}
    for item in value:
        edge = SavedEdge.model_validate(item)
        edges[_edge_key(edge.source, edge.target, edge.slot)] = edge
    return edges


class SavedNode(BaseModel):
    """Persisted node record.

    An inline nested graph is stored whole under ``graph``. As a shorthand,
    a record may carry ``nodes`` / ``edges`` / ``out`` directly; they are
    read as an inline graph whose id is the node id. When ``kind`` is
    omitted it is inferred: nested or referencing nodes are ``ref`` nodes,
    everything else is a ``value`` node.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    kind: str | None = None
    value: Any = None
    ref: str | None = None
    graph: SavedGraph | None = None
    name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _lift_inline_graph(cls, data: Any) -> Any:
        if not isinstance(data, Mapping) or "nodes" not in data or data.get("graph") is not None:
            return data
        record = {k: v for k, v in data.items() if k not in _INLINE_GRAPH_FIELDS}
        inline = {k: data[k] for k in _INLINE_GRAPH_FIELDS if k in data and data[k] is not None}
        return {**record, "graph": {"id": data.get("id"), **inline}}


class SavedGraph(BaseModel):
    """Persisted graph record."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    out: str = "out"
    name: str | None = None
    description: str | None = None
    nodes: dict[str, SavedNode] = Field(default_factory=dict)
    edges: dict[str, SavedEdge] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _key_nodes(cls, data: Any) -> Any:
        return _nodes_by_id(data)

    @field_validator("edges", mode="before")
    @classmethod
    def _key_edges(cls, value: Any) -> Any:
        return _edges_by_id(value)


SavedNode.model_rebuild()


def _infer_kind(saved: SavedNode) -> NodeKind | str:
    raw = saved.kind
    if raw is None:
        return NodeKind.REF if saved.graph is not None or saved.ref is not None else NodeKind.VALUE
    try:
        return NodeKind(raw)
    except ValueError:
        logger.debug(f"Node '{saved.id}' has unknown kind '{raw}'")
        return raw


def _edges_from_saved(edges: Mapping[str, SavedEdge]) -> dict[str, Edge]:
    return {key: Edge(source=e.source, target=e.target, slot=e.slot) for key, e in edges.items()}


def _graph_from_saved(saved: SavedGraph) -> Graph:
    return Graph(
        id=saved.id,
        nodes={key: _node_from_saved(n) for key, n in saved.nodes.items()},
        edges=_edges_from_saved(saved.edges),
        out=saved.out,
        name=saved.name,
        description=saved.description,
        metadata=dict(saved.metadata),
    )


def _node_from_saved(saved: SavedNode) -> Node:
    return Node(
        id=saved.id,
        kind=_infer_kind(saved),
        value=saved.value,
        ref=saved.ref,
        graph=_graph_from_saved(saved.graph) if saved.graph is not None else None,
        name=saved.name,
        metadata=dict(saved.metadata),
    )


def _edges_to_saved(edges: Mapping[str, Edge]) -> dict[str, SavedEdge]:
    return {key: SavedEdge(source=e.source, target=e.target, slot=e.slot) for key, e in edges.items()}


def _node_to_saved(node: Node) -> SavedNode:
    return SavedNode(
        id=node.id,
        kind=str(node.kind),
        value=node.value,
        ref=node.ref,
        graph=to_saved(node.graph) if node.graph is not None else None,
        name=node.name,
        metadata=dict(node.metadata),
    )


def base_node(record: Node | SavedNode | Mapping[str, Any]) -> Node:
    """Normalize a node record into a Node, filling declared defaults.

    Args:
        record: A Node (returned unchanged), a SavedNode, or a raw mapping.

    Returns:
        The normalized Node.

    Raises:
        pydantic.ValidationError: If a raw record is malformed.

    """
    if isinstance(record, Node):
        return record
    saved = record if isinstance(record, SavedNode) else SavedNode.model_validate(record)
    return _node_from_saved(saved)


def base_graph(record: Graph | SavedGraph | Mapping[str, Any]) -> Graph:
    """Normalize a graph record into a Graph, filling declared defaults.

    Args:
        record: A Graph (returned unchanged), a SavedGraph, or a raw mapping.

    Returns:
        The normalized Graph.

    Raises:
        pydantic.ValidationError: If a raw record is malformed.

    """
    if isinstance(record, Graph):
        return record
    saved = record if isinstance(record, SavedGraph) else SavedGraph.model_validate(record)
    return _graph_from_saved(saved)


def to_saved(graph: Graph) -> SavedGraph:
    """Convert a working Graph into its persisted form."""
    return SavedGraph(
        id=graph.id,
        out=graph.out,
        name=graph.name,
        description=graph.description,
        nodes={key: _node_to_saved(n) for key, n in graph.nodes.items()},
        edges=_edges_to_saved(graph.edges),
        metadata=dict(graph.metadata),
    )


def from_saved(saved: SavedGraph) -> Graph:
    """Convert a persisted graph into its working form."""
    return base_graph(saved)


def dump_graph(graph: Graph) -> dict[str, Any]:
    """Dump a graph to plain Python data using the persisted field names."""
    return to_saved(graph).model_dump(by_alias=True, exclude_none=True)
