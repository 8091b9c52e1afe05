"""Node and edge records of a computation graph."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum, auto
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ._graph import Graph


class NodeKind(StrEnum):
    """The kind of a node, selecting its evaluation semantics."""

    VALUE = auto()  # Constant value (an awaitable constant is a pending value)
    REF = auto()  # Functional nested-graph invocation, memoized by input identity
    EXECUTABLE = auto()  # Nested-graph invocation with side effects, never memoized
    EXTERN = auto()  # Named library primitive
    FRAME_EXTERN = auto()  # Library primitive gated to once per animation frame
    SCRIPT = auto()  # Host-supplied function body
    SWITCH = auto()
    MAP = auto()
    FOLD = auto()
    STATE = auto()
    ARG = auto()
    HTML_ELEMENT = auto()
    EVENT = auto()
    PUBLISH = auto()
    RETURN = auto()


GRAPH_KINDS = frozenset({NodeKind.REF, NodeKind.EXECUTABLE})


@dataclass(frozen=True, slots=True)
class Edge:
    """A directed dependency from ``source`` into the ``slot`` input of ``target``."""

    source: str
    target: str
    slot: str = "value"

    @property
    def id(self) -> str:
        """Default identifier used when an edge is added without an explicit key."""
        return f"{self.source}->{self.target}:{self.slot}"

    def renamed(self, id_map: Mapping[str, str]) -> Edge:
        """Return a copy with endpoints substituted through ``id_map``."""
        return replace(
            self,
            source=id_map.get(self.source, self.source),
            target=id_map.get(self.target, self.target),
        )


@dataclass(frozen=True, slots=True)
class Node:
    """A unit of computation.

    Attributes:
        id: Identifier, unique within the owning graph.
        kind: Evaluation semantics. Unknown kind strings are kept as plain
            strings so that the dispatcher can report them.
        value: Kind-specific payload: a constant, a callable script body,
            a library name, an argument name, a channel name or an element type.
        ref: Id of the graph invoked by ``ref`` / ``executable`` nodes.
        graph: Inline nested graph, used instead of ``ref`` when present.
        name: Optional display name.
        metadata: Free-form metadata carried through persistence.

    """

    id: str
    kind: NodeKind | str = NodeKind.VALUE
    value: Any = None
    ref: str | None = None
    graph: Graph | None = None
    name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def references_graph(self) -> bool:
        """Check if this node invokes a nested graph."""
        return self.kind in GRAPH_KINDS

    def with_id(self, node_id: str) -> Node:
        return replace(self, id=node_id)
