"""Dependency graph over node ids, used for static cycle checks."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ._algorithms import partial_topological_order

if TYPE_CHECKING:
    from collections.abc import Iterable


@dataclass(frozen=True, slots=True)
class DependencyGraph[T]:
    """An immutable directed graph of "depends on" relationships.

    Evaluation itself never needs a global order: it resolves dependencies
    on demand. This graph only answers whether the declared edges are acyclic.

    Attributes:
        _successors: Mapping from node to nodes that depend on it.

    """

    _successors: dict[T, frozenset[T]] = field(default_factory=dict)

    @classmethod
    def from_edges(cls, edges: Iterable[tuple[T, T]], nodes: Iterable[T] = ()) -> DependencyGraph[T]:
        """Build a graph from (source, target) edges plus optional isolated nodes.

        An edge (a, b) means "b depends on a".

        Example:
            >>> graph = DependencyGraph.from_edges([("a", "b")], nodes=["c"])
            >>> sorted(graph.nodes)
            ['a', 'b', 'c']

        """
        successors: defaultdict[T, set[T]] = defaultdict(set)
        for node in nodes:
            successors.setdefault(node, set())
        for src, dst in edges:
            successors[src].add(dst)
            successors.setdefault(dst, set())
        return cls(_successors={k: frozenset(v) for k, v in successors.items()})

    @property
    def nodes(self) -> frozenset[T]:
        """All nodes in the graph."""
        return frozenset(self._successors)

    def cycle_nodes(self) -> frozenset[T]:
        """Nodes that lie on, or downstream of, a cycle.

        Returns:
            Empty set if the graph is acyclic.

        """
        return self.nodes - frozenset(partial_topological_order(self._successors))

    def validate(self) -> list[str]:
        """Return error messages for cycles. Empty list if the graph is acyclic."""
        stuck = self.cycle_nodes()
        if not stuck:
            return []
        return [f"Graph contains a cycle through: {', '.join(sorted(map(str, stuck)))}"]
