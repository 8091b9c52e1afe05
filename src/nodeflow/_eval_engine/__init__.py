"""Evaluation engine for nodeflow graphs.

This module evaluates graphs on demand, dispatching on node kinds. Results
are Futures that stay synchronous until a node produces a pending value.

Key types:
- Runtime: Evaluates graphs; owns caches, state cells and event subscriptions
- Runnable: A node closed over its environment, delivered to fn/catch inputs
- StateCell: Memory of a state node
- NodeWatch: Async iterator over the values a node instance settles with
"""

from ._dispatch import HANDLERS, MEMOIZED_KINDS
from ._engine import NodeContext, NodeWatch, Runnable, Runtime, StateCell

__all__ = [
    "HANDLERS",
    "MEMOIZED_KINDS",
    "NodeContext",
    "NodeWatch",
    "Runnable",
    "Runtime",
    "StateCell",
]
