"""Dataflow graph execution engine."""

__all__ = [
    "CycleError",
    "DependencyGraph",
    "DiagnosticsSink",
    "Edge",
    "Element",
    "Env",
    "EventSubscription",
    "Extern",
    "FlattenedGraph",
    "Future",
    "FuturePendingError",
    "Graph",
    "GraphStore",
    "Host",
    "Lib",
    "LocalHost",
    "LoggingSink",
    "Message",
    "MissingExternError",
    "MissingGraphError",
    "Node",
    "NodeEvaluationError",
    "NodeKind",
    "NodeNotFoundError",
    "NodeWatch",
    "NodeflowError",
    "PubSub",
    "Runnable",
    "Runtime",
    "SavedGraph",
    "StateCell",
    "TextElement",
    "UnknownNodeKindError",
    "ancestor_graph",
    "append_graph_id",
    "base_graph",
    "base_node",
    "bfs",
    "combine_env",
    "contract_node",
    "descendant_graph",
    "dump_graph",
    "expand_node",
    "flatten_node",
    "from_saved",
    "load_graph",
    "load_graphs",
    "merge_lib",
    "new_env",
    "new_lib",
    "save_graph",
    "to_saved",
    "validate_graph",
    "wrap",
]

from ._env import Env, Extern, Lib, combine_env, merge_lib, new_env, new_lib
from ._errors import (
    CycleError,
    FuturePendingError,
    MissingExternError,
    MissingGraphError,
    NodeEvaluationError,
    NodeflowError,
    NodeNotFoundError,
    UnknownNodeKindError,
)
from ._eval_engine import NodeWatch, Runnable, Runtime, StateCell
from ._future import Future, wrap
from ._graph import (
    DependencyGraph,
    FlattenedGraph,
    ancestor_graph,
    append_graph_id,
    bfs,
    contract_node,
    descendant_graph,
    expand_node,
    flatten_node,
)
from ._host import (
    DiagnosticsSink,
    Element,
    EventSubscription,
    Host,
    LocalHost,
    LoggingSink,
    Message,
    PubSub,
    TextElement,
)
from ._io import load_graph, load_graphs, save_graph
from ._store import (
    Edge,
    Graph,
    GraphStore,
    Node,
    NodeKind,
    SavedGraph,
    base_graph,
    base_node,
    dump_graph,
    from_saved,
    to_saved,
    validate_graph,
)
