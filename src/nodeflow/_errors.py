"""Exception types raised by nodeflow."""


class NodeflowError(Exception):
    """Base class for all nodeflow errors."""


class NodeEvaluationError(NodeflowError):
    """An error attributed to a specific node of a specific graph.

    The original exception, if any, is chained as ``__cause__``.

    Attributes:
        node_id: Id of the node where the failure originated.
        graph_id: Id of the graph (or nested graph instance) owning the node.
        reported: Whether the error has already been sent to a diagnostics sink.

    """

    def __init__(self, node_id: str, graph_id: str, message: str) -> None:
        self.node_id = node_id
        self.graph_id = graph_id
        self.reported = False
        super().__init__(f"[{graph_id}/{node_id}] {message}")


class CycleError(NodeEvaluationError):
    """Evaluation re-entered a node that is already being evaluated."""


class UnknownNodeKindError(NodeEvaluationError):
    """A node carries a kind tag the dispatcher has no handler for."""


class NodeNotFoundError(NodeEvaluationError):
    """A node id was requested that does not exist in its graph."""


class MissingExternError(NodeEvaluationError):
    """An extern node names an implementation absent from the library."""


class MissingGraphError(NodeEvaluationError):
    """A reference node names a graph that cannot be resolved."""


class FuturePendingError(NodeflowError):
    """A pending result was accessed synchronously."""


class ConfigError(NodeflowError):
    """Error in nodeflow configuration."""
