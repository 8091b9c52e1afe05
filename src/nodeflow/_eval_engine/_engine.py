"""Demand-driven evaluation of computation graphs.

``Runtime`` evaluates a node by first resolving its inputs (following
incoming edges) and then dispatching on the node's kind. Results are
``Future`` objects, so a graph evaluates synchronously until some node
produces a pending value, and asynchronously from there on.

Each ``run`` is one request with its own generation. Within a request every
node instance is evaluated at most once, and a node that failed keeps
failing with the same error. Across requests, memoized kinds are reused
while their inputs, their node record and what it resolves to are identical
objects. A pending result that completes after a newer request for the same
node was issued is discarded in favor of the newer request's result.

``Runtime.watch`` observes the values a node instance settles with.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from nodeflow._env import GRAPH_ID_ARG, Env, Lib, combine_env, new_env, new_lib
from nodeflow._errors import (
    CycleError,
    MissingGraphError,
    NodeEvaluationError,
    NodeNotFoundError,
    UnknownNodeKindError,
)
from nodeflow._future import Future, wrap
from nodeflow._graph import ancestor_graph, append_graph_id, descendant_graph
from nodeflow._host import EventSubscription, LocalHost, LoggingSink
from nodeflow._store import GraphStore

from ._dispatch import HANDLERS, MEMOIZED_KINDS, cache_identity, is_eager

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from nodeflow._env import Extern
    from nodeflow._future import ErrorHandler
    from nodeflow._host import DiagnosticsSink, Host
    from nodeflow._store import Edge, Graph, Node

logger = logging.getLogger(__name__)

# Failures that end the request regardless of catch handlers.
FATAL_ERRORS = (CycleError, UnknownNodeKindError)

_UNSET = object()
_END = object()


@dataclass(slots=True)
class _Request:
    """Arena of one evaluation request: results and failures by qualified node key."""

    generation: int
    results: dict[str, Future[Any]] = field(default_factory=dict)
    failures: dict[str, Exception] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class _Scope:
    """Where a node is being evaluated.

    Attributes:
        graph: Graph owning the nodes evaluated in this scope.
        graph_id: Instance id qualifying node keys of this scope.
        env: Active environment.
        lib: Active library.
        request: Arena of the current request.
        path: Keys of the nodes currently being evaluated, for cycle detection.
        memoize: Whether memoized kinds may reuse cached results.

    """

    graph: Graph
    graph_id: str
    env: Env
    lib: Lib
    request: _Request
    path: frozenset[str] = frozenset()
    memoize: bool = True

    def with_env(self, env: Env) -> _Scope:
        return replace(self, env=env)

    def with_lib(self, lib: Lib) -> _Scope:
        return replace(self, lib=lib)

    def fresh(self) -> _Scope:
        """Same scope with an empty result arena of the same generation."""
        return replace(self, request=_Request(self.request.generation))


@dataclass(slots=True)
class _CacheEntry:
    identity: tuple[Any, ...]
    inputs: tuple[Any, ...]
    value: Any

    def matches(self, identity: tuple[Any, ...], inputs: tuple[Any, ...]) -> bool:
        return _same(identity, self.identity) and _same(inputs, self.inputs)


def _same(a: tuple[Any, ...], b: tuple[Any, ...]) -> bool:
    return len(a) == len(b) and all(x is y for x, y in zip(a, b, strict=True))


@dataclass(slots=True)
class StateCell:
    """Memory of a state node.

    Reads return the stored value until ``set`` fires; the first read after
    that stores and returns the new value.
    """

    value: Any = None
    initialized: bool = False
    update: Any = None
    has_update: bool = False

    def set(self, value: Any) -> None:
        self.update = value
        self.has_update = True

    def read(self, initial: Callable[[], Any]) -> Any:
        if self.has_update:
            self.value = self.update
            self.update = None
            self.has_update = False
            self.initialized = True
        elif not self.initialized:
            self.value = initial()
            self.initialized = True
        return self.value


class NodeWatch:
    """Async iterator over the values a node instance settles with.

    A value is queued whenever the node settles with a result that is not
    the object delivered last, so a cache hit does not repeat a value.
    Iteration ends once the watch is closed.
    """

    __slots__ = ("_last", "_queue", "closed", "key")

    def __init__(self, key: str) -> None:
        self.key = key
        self.closed = False
        self._last: Any = _UNSET
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    def deliver(self, value: Any) -> None:
        if self.closed or value is self._last:
            return
        self._last = value
        self._queue.put_nowait(value)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_END)

    def __aiter__(self) -> NodeWatch:
        return self

    async def __anext__(self) -> Any:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        value = await self._queue.get()
        if value is _END:
            raise StopAsyncIteration
        return value

    def __repr__(self) -> str:
        return f"NodeWatch({self.key!r}, closed={self.closed})"


class NodeContext:
    """A node being evaluated, as seen by its handler."""

    __slots__ = ("key", "node", "runtime", "scope")

    def __init__(self, runtime: Runtime, scope: _Scope, node: Node, key: str) -> None:
        self.runtime = runtime
        self.scope = scope
        self.node = node
        self.key = key

    @property
    def graph_id(self) -> str:
        return self.scope.graph_id

    def edge(self, slot: str) -> Edge | None:
        """The last incoming edge on ``slot``, if any."""
        found = None
        for edge in self.scope.graph.edges_in(self.node.id):
            if edge.slot == slot:
                found = edge
        return found

    def evaluate(self, node_id: str, scope: _Scope | None = None) -> Future[Any]:
        return self.runtime._evaluate(scope or self.scope, node_id)  # noqa: SLF001

    def runnable(self, slot: str) -> Runnable | None:
        edge = self.edge(slot)
        return None if edge is None else Runnable(self, edge.source)

    def enter(
        self,
        graph: Graph,
        instance_id: str,
        env: Env,
        *,
        memoize: bool | None = None,
        request: _Request | None = None,
    ) -> _Scope:
        """Open a nested graph instance owned by this node."""
        self.runtime._register_instance(instance_id, graph, self.graph_id, self.node.id)  # noqa: SLF001
        return _Scope(
            graph=graph,
            graph_id=instance_id,
            env=env,
            lib=self.scope.lib,
            request=request or self.scope.request,
            path=self.scope.path,
            memoize=self.scope.memoize if memoize is None else memoize,
        )


class Runnable:
    """A node closed over the graph, environment and library it was bound in.

    Invoking it evaluates the node with extra parameters bound on top of the
    captured environment, as a separate graph instance. Delivered to ``fn``
    and ``catch`` inputs instead of an evaluated value.
    """

    __slots__ = ("_owner", "node_id")

    def __init__(self, owner: NodeContext, node_id: str) -> None:
        self._owner = owner
        self.node_id = node_id

    def invoke(self, args: Mapping[str, Any] | None = None, instance: str | None = None) -> Future[Any]:
        """Evaluate the node with ``args`` bound.

        Args:
            args: Parameters visible to ``arg`` nodes upstream of the node.
            instance: Instance id qualifying the nodes evaluated by this call.
                Defaults to the owner's key qualified with the node id.

        """
        owner = self._owner
        instance_id = instance or append_graph_id(owner.key, self.node_id)
        graph = owner.runtime._instance_graphs.get(owner.graph_id, owner.scope.graph)  # noqa: SLF001
        env = combine_env(args or {}, owner.scope.env, node_id=self.node_id)
        scope = owner.enter(graph, instance_id, env, request=_Request(owner.scope.request.generation))
        return owner.evaluate(self.node_id, scope)

    def __call__(self, **kwargs: Any) -> Future[Any]:
        return self.invoke(kwargs)

    def __repr__(self) -> str:
        return f"Runnable({self._owner.key!r} -> {self.node_id!r})"


class Runtime:
    """Evaluates graphs against a library, a graph store and a host.

    Args:
        lib: Named primitives for extern nodes.
        graphs: Graphs that reference nodes may invoke by id.
        host: Frame clock, UI elements and event channels.
        sink: Receives every node-attributed failure exactly once.
        error_handler: Converts a failed run into a value. Without one the
            error propagates to the caller of ``run``.

    """

    def __init__(
        self,
        lib: Lib | Mapping[str, Extern | Callable[..., Any]] | None = None,
        graphs: GraphStore | Mapping[str, Graph] | Iterable[Graph] | None = None,
        host: Host | None = None,
        sink: DiagnosticsSink | None = None,
        error_handler: ErrorHandler | None = None,
    ) -> None:
        self.lib = lib if isinstance(lib, Lib) else new_lib(lib)
        if isinstance(graphs, GraphStore):
            self.graphs = graphs
        else:
            self.graphs = GraphStore(graphs.values() if isinstance(graphs, Mapping) else graphs or ())
        self.host: Host = host or LocalHost()
        self.sink: DiagnosticsSink = sink or LoggingSink()
        self.error_handler = error_handler

        self._generation = 0
        # Generation bookkeeping, held only while a pending result is outstanding.
        self._issued: dict[str, int] = {}
        self._latest: dict[str, tuple[int, Future[Any]]] = {}
        self._outstanding: dict[str, int] = {}
        self._cache: dict[str, _CacheEntry] = {}
        self._watches: dict[str, list[NodeWatch]] = {}
        self._states: dict[str, StateCell] = {}
        self._frames: dict[str, tuple[int, Future[Any]]] = {}
        self._awaitables: dict[str, tuple[Any, Future[Any]]] = {}
        self._subscriptions: dict[str, EventSubscription] = {}
        self._instances: dict[str, tuple[str, str]] = {}
        self._instance_graphs: dict[str, Graph] = {}

    @property
    def generation(self) -> int:
        return self._generation

    def run(
        self,
        graph: Graph | str,
        node_id: str | None = None,
        args: Mapping[str, Any] | None = None,
    ) -> Future[Any]:
        """Evaluate a node of a graph as a new request.

        Args:
            graph: The graph, or the id of a graph in the store.
            node_id: Node to evaluate. Defaults to the graph's output node.
            args: Parameters visible to ``arg`` nodes.

        Returns:
            A Future over the node's value. It is already available unless
            some node on the way produced a pending value.

        Raises:
            NodeEvaluationError: If evaluation fails synchronously and no
                error handler converts the failure.

        """
        if isinstance(graph, str):
            resolved = self.graphs.get(graph)
            if resolved is None:
                msg = f"Graph '{graph}' is not in the store"
                raise MissingGraphError(node_id or "out", graph, msg)
            graph = resolved

        target = node_id or graph.out
        if target not in graph.nodes:
            msg = f"Node '{target}' does not exist"
            raise NodeNotFoundError(target, graph.id, msg)

        self._generation += 1
        self._instance_graphs[graph.id] = graph
        scope = _Scope(
            graph=ancestor_graph(target, graph),
            graph_id=graph.id,
            env=new_env({**(args or {}), GRAPH_ID_ARG: graph.id}),
            lib=self.lib,
            request=_Request(self._generation),
        )
        logger.debug(f"Request {self._generation}: evaluating '{target}' of graph '{graph.id}'")

        try:
            result = self._evaluate(scope, target)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            if self.error_handler is None:
                raise
            return wrap(self.error_handler(e))
        if self.error_handler is None:
            return result
        return result.catch(self._handle_top_level)

    async def run_async(
        self,
        graph: Graph | str,
        node_id: str | None = None,
        args: Mapping[str, Any] | None = None,
    ) -> Any:
        """Evaluate like ``run`` and await the value."""
        return await self.run(graph, node_id, args)

    def _handle_top_level(self, error: Exception) -> Any:
        if isinstance(error, FATAL_ERRORS) or self.error_handler is None:
            raise error
        return self.error_handler(error)

    def _evaluate(self, scope: _Scope, node_id: str) -> Future[Any]:
        key = append_graph_id(scope.graph_id, node_id)
        request = scope.request
        if key in request.results:
            return request.results[key]
        if key in request.failures:
            raise request.failures[key]

        node = scope.graph.nodes.get(node_id)
        if node is None:
            msg = f"Node '{node_id}' does not exist"
            raise NodeNotFoundError(node_id, scope.graph_id, msg)
        if key in scope.path:
            msg = f"Node '{node_id}' depends on itself"
            return self._recover(scope, node, key, CycleError(node_id, scope.graph_id, msg))

        inner = replace(scope, path=scope.path | {key})
        try:
            result = self._compute(inner, node, key)
        except Exception as e:
            try:
                result = wrap(self._recover(scope, node, key, e))
            except Exception as error:
                request.failures[key] = error
                raise
        else:
            if not result.is_ready:
                result = self._recovering(scope, node, key, result)

        request.results[key] = result
        if key in self._outstanding:
            self._latest[key] = (request.generation, result)
        return result

    def _recovering(self, scope: _Scope, node: Node, key: str, pending: Future[Any]) -> Future[Any]:
        """Recover a pending failure once, however many consumers await the result."""

        async def settled() -> Any:
            try:
                return await pending
            except Exception as e:
                return await wrap(self._recover(scope, node, key, e))

        return Future(source=settled)

    def _compute(self, scope: _Scope, node: Node, key: str) -> Future[Any]:
        handler = HANDLERS.get(node.kind)
        if handler is None:
            msg = f"Unknown node kind '{node.kind}'"
            raise UnknownNodeKindError(node.id, scope.graph_id, msg)

        edges = [e for e in scope.graph.edges_in(node.id) if is_eager(node.kind, e.slot)]
        joined = Future.all(self._evaluate(scope, e.source) for e in edges)
        ctx = NodeContext(self, scope, node, key)
        identity = None
        if scope.memoize and node.kind in MEMOIZED_KINDS:
            identity = cache_identity(node, scope.lib, self.graphs)
        generation = scope.request.generation
        self._issued[key] = generation

        def apply(values: list[Any]) -> Future[Any]:
            inputs = tuple(values)
            if identity is not None:
                entry = self._cache.get(key)
                if entry is not None and entry.matches(identity, inputs):
                    logger.debug(f"Cache hit for '{key}'")
                    self._notify(key, entry.value)
                    return Future.ready(entry.value)
            logger.debug(f"Dispatching '{key}' ({node.kind})")
            result = wrap(handler(ctx, {e.slot: v for e, v in zip(edges, values, strict=True)}))
            if not result.is_ready:
                return result.then(lambda value: self._settle(key, generation, identity, inputs, value))
            value = result.result()
            if identity is not None:
                self._cache[key] = _CacheEntry(identity, inputs, value)
            self._notify(key, value)
            return result

        future = joined.then(apply)
        if future.is_ready:
            if key not in self._outstanding:
                self._issued.pop(key, None)
            return future
        self._outstanding[key] = self._outstanding.get(key, 0) + 1
        return future.finalize(lambda: self._release(key))

    def _settle(
        self,
        key: str,
        generation: int,
        identity: tuple[Any, ...] | None,
        inputs: tuple[Any, ...],
        value: Any,
    ) -> Any:
        """Accept a pending result, unless a newer request superseded it."""
        issued = self._issued.get(key, generation)
        if issued != generation:
            logger.debug(f"Discarding stale result of '{key}' from request {generation}")
            latest = self._latest.get(key)
            return latest[1] if latest is not None and latest[0] == issued else value
        if identity is not None:
            self._cache[key] = _CacheEntry(identity, inputs, value)
        self._notify(key, value)
        return value

    def _release(self, key: str) -> None:
        remaining = self._outstanding.pop(key, 1) - 1
        if remaining > 0:
            self._outstanding[key] = remaining
            return
        self._issued.pop(key, None)
        self._latest.pop(key, None)

    def _notify(self, key: str, value: Any) -> None:
        for watch in self._watches.get(key, ()):
            watch.deliver(value)

    def _recover(self, scope: _Scope, node: Node, key: str, exc: Exception) -> Any:
        """Attribute a failure to ``node``, report it, and try its catch handler.

        Returns the catch handler's result. Raises the attributed error when
        the node has no catch handler or the failure is fatal.
        """
        if isinstance(exc, NodeEvaluationError):
            error = exc
        else:
            error = NodeEvaluationError(node.id, scope.graph_id, f"{type(exc).__name__}: {exc}")
            error.__cause__ = exc
        if not error.reported:
            error.reported = True
            self.sink.report_error(error, scope.graph, node, scope.graph_id)

        if isinstance(error, FATAL_ERRORS):
            raise error
        ctx = NodeContext(self, replace(scope, path=scope.path | {key}), node, key)
        handler = ctx.runnable("catch")
        if handler is None:
            raise error
        logger.debug(f"Recovering '{key}' through its catch handler")
        return handler.invoke({"error": error}, instance=append_graph_id(key, "catch"))

    def _register_instance(self, instance_id: str, graph: Graph, parent_graph_id: str, parent_node_id: str) -> None:
        self._instances[instance_id] = (parent_graph_id, parent_node_id)
        self._instance_graphs[instance_id] = graph

    def invalidate(self, graph_id: str, node_id: str) -> list[str]:
        """Drop cached results of a node and everything that depends on it.

        Dependents inside the node's graph instance are dropped, then the
        node owning the instance (a reference, map or fold node) is
        invalidated in its own graph, up to the top-level graph.

        Returns:
            Keys whose cached results were dropped.

        """
        keys = [append_graph_id(graph_id, node_id)]
        graph = self._instance_graphs.get(graph_id)
        if graph is not None and node_id in graph.nodes:
            dependents = descendant_graph(node_id, graph, lambda child, _edge: append_graph_id(graph_id, child))
            keys.extend(dependents.values())

        dropped = [key for key in keys if self._cache.pop(key, None) is not None]
        for key in keys:
            self._frames.pop(key, None)
        logger.debug(f"Invalidated '{append_graph_id(graph_id, node_id)}': dropped {len(dropped)} cached results")

        parent = self._instances.get(graph_id)
        if parent is not None:
            dropped.extend(self.invalidate(*parent))
        return dropped

    def is_cached(self, graph_id: str, node_id: str) -> bool:
        return append_graph_id(graph_id, node_id) in self._cache

    def state_cell(self, graph_id: str, node_id: str) -> StateCell:
        return self._states.setdefault(append_graph_id(graph_id, node_id), StateCell())

    def set_state(self, graph_id: str, node_id: str, value: Any) -> None:
        """Fire the update trigger of a state node."""
        self.state_cell(graph_id, node_id).set(value)
        self.invalidate(graph_id, node_id)

    def subscription(self, graph_id: str, node_id: str, channel: str) -> EventSubscription:
        """The channel subscription of an event node instance, created once."""
        key = append_graph_id(graph_id, node_id)
        subscription = self._subscriptions.get(key)
        if subscription is not None and subscription.channel == channel:
            return subscription
        if subscription is not None:
            subscription.close()
        logger.debug(f"Subscribing '{key}' to channel '{channel}'")
        subscription = EventSubscription(self.host, channel, lambda _message: self.invalidate(graph_id, node_id))
        self._subscriptions[key] = subscription
        return subscription

    def frame_result(self, key: str, tick: int) -> Future[Any] | None:
        previous = self._frames.get(key)
        if previous is None or previous[0] != tick:
            return None
        return previous[1]

    def store_frame_result(self, key: str, tick: int, result: Future[Any]) -> None:
        self._frames[key] = (tick, result)

    def shared_awaitable(self, key: str, awaitable: Awaitable[Any]) -> Future[Any]:
        """Wrap a constant awaitable once so that repeated reads share it."""
        previous = self._awaitables.get(key)
        if previous is not None and previous[0] is awaitable:
            return previous[1]
        future = Future.pending(awaitable)
        self._awaitables[key] = (awaitable, future)
        return future

    def watch(self, graph_id: str, node_id: str) -> NodeWatch:
        """Observe the values a node instance settles with.

        Values produced by later requests are delivered in order, including
        those of pending results once they complete. Stale results discarded
        in favor of a newer request are not delivered.

        Args:
            graph_id: Instance id of the graph owning the node.
            node_id: The node to observe.

        Returns:
            An async iterator over the node's new values. It ends once the
            watch is passed to ``unwatch`` or the runtime is closed.

        """
        key = append_graph_id(graph_id, node_id)
        watch = NodeWatch(key)
        self._watches.setdefault(key, []).append(watch)
        logger.debug(f"Watching '{key}'")
        return watch

    def unwatch(self, watch: NodeWatch) -> None:
        """Stop delivering values to ``watch`` and end its iteration."""
        watches = self._watches.get(watch.key)
        if watches is not None and watch in watches:
            watches.remove(watch)
            if not watches:
                del self._watches[watch.key]
        watch.close()

    def close(self) -> None:
        """Cancel every event subscription and end every watch."""
        for subscription in self._subscriptions.values():
            subscription.close()
        self._subscriptions.clear()
        for watches in self._watches.values():
            for watch in watches:
                watch.close()
        self._watches.clear()
