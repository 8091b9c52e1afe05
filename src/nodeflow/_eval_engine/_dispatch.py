"""Per-kind node handlers.

Every ``NodeKind`` has exactly one handler. A handler receives the node's
context and its eagerly resolved inputs keyed by slot, and returns a raw
value, an awaitable, or a ``Future``. Slots listed in ``LAZY_SLOTS`` are not
resolved up front: the handler evaluates them on demand (switch branches,
return values) or receives them as ``Runnable`` closures (``fn``, ``catch``).
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from nodeflow._env import GRAPH_ID_ARG, Lib, combine_env, merge_lib, new_env, new_lib
from nodeflow._errors import MissingExternError, MissingGraphError, NodeEvaluationError
from nodeflow._future import Future, wrap
from nodeflow._graph import append_graph_id, nested_graph
from nodeflow._store import NodeKind

if TYPE_CHECKING:
    from collections.abc import Callable

    from nodeflow._store import Graph, Node

    from ._engine import NodeContext, Runnable

    type Handler = Callable[[NodeContext, dict[str, Any]], Any]

logger = logging.getLogger(__name__)

RUNNABLE_SLOTS = frozenset({"fn", "catch"})

# Slots a handler resolves itself. Anything not listed is resolved eagerly.
LAZY_SLOTS: dict[str, frozenset[str] | None] = {
    NodeKind.SWITCH: None,  # every slot except the selector
    NodeKind.RETURN: frozenset({"value", "display"}),
}

# Kinds whose result depends only on their eager inputs and on what
# `cache_identity` returns, and so may be reused while all of them are the
# identical objects seen last time. Externs declared impure opt out.
MEMOIZED_KINDS = frozenset({NodeKind.REF, NodeKind.EXTERN, NodeKind.SCRIPT, NodeKind.HTML_ELEMENT})

HANDLERS: dict[str, Handler] = {}


def is_eager(kind: str, slot: str) -> bool:
    """Check whether an input slot of a node kind is resolved before dispatch."""
    if slot in RUNNABLE_SLOTS:
        return False
    if kind not in LAZY_SLOTS:
        return True
    lazy = LAZY_SLOTS[kind]
    return slot == "input" if lazy is None else slot not in lazy


def cache_identity(node: Node, lib: Lib, graphs: Mapping[str, Graph]) -> tuple[Any, ...] | None:
    """Objects besides the inputs that a memoized result of ``node`` depends on.

    A cached result is reused only while the node record, and the extern or
    graph it resolves to, are the identical objects. ``None`` marks a node
    whose result must not be memoized.
    """
    if node.kind == NodeKind.EXTERN:
        extern = lib.get(node.value) if isinstance(node.value, str) else None
        if extern is not None and not extern.pure:
            return None
        return (node, extern)
    if node.kind == NodeKind.REF:
        return (node, nested_graph(node, graphs))
    return (node,)


def _handles(kind: NodeKind) -> Callable[[Handler], Handler]:
    def register(handler: Handler) -> Handler:
        HANDLERS[kind] = handler
        return handler

    return register


@_handles(NodeKind.VALUE)
def _value(ctx: NodeContext, _inputs: dict[str, Any]) -> Any:
    value = ctx.node.value
    if inspect.isawaitable(value):
        return ctx.runtime.shared_awaitable(ctx.key, value)
    return value


@_handles(NodeKind.ARG)
def _arg(ctx: NodeContext, _inputs: dict[str, Any]) -> Any:
    """Resolve a parameter from the environment.

    ``_args`` yields every visible binding. Dotted names such as ``a.b``
    descend into mappings and attributes. Unbound names resolve to ``None``.
    """
    name = ctx.node.value
    env = ctx.scope.env
    if name == "_args":
        return env.flatten()
    if not isinstance(name, str) or not name:
        return None
    head, *rest = name.split(".")
    value = env.get(head)
    for part in rest:
        if value is None:
            return None
        value = value.get(part) if isinstance(value, Mapping) else getattr(value, part, None)
    return value


@_handles(NodeKind.SCRIPT)
def _script(ctx: NodeContext, inputs: dict[str, Any]) -> Any:
    body = ctx.node.value
    if not callable(body):
        msg = "Script node has no callable body"
        raise NodeEvaluationError(ctx.node.id, ctx.graph_id, msg)
    return body(**inputs)


def _call_extern(ctx: NodeContext, inputs: dict[str, Any]) -> Any:
    name = ctx.node.value
    extern = ctx.scope.lib.get(name) if isinstance(name, str) else None
    if extern is None:
        msg = f"Extern '{name}' is not in the library"
        raise MissingExternError(ctx.node.id, ctx.graph_id, msg)
    if extern.args is None:
        return extern.fn(**inputs)

    reserved = {"_node": ctx.node, "_lib": ctx.scope.lib, "_env": ctx.scope.env, "_graph_id": ctx.graph_id}
    kwargs: dict[str, Any] = {}
    for arg in extern.args:
        if arg in reserved:
            kwargs[arg] = reserved[arg]
        elif arg in inputs:
            kwargs[arg] = inputs[arg]
    return extern.fn(**kwargs)


@_handles(NodeKind.EXTERN)
def _extern(ctx: NodeContext, inputs: dict[str, Any]) -> Any:
    return _call_extern(ctx, inputs)


@_handles(NodeKind.FRAME_EXTERN)
def _frame_extern(ctx: NodeContext, inputs: dict[str, Any]) -> Any:
    """Call an extern at most once per animation-frame tick."""
    tick = ctx.runtime.host.frame()
    previous = ctx.runtime.frame_result(ctx.key, tick)
    if previous is not None:
        logger.debug(f"Reusing frame {tick} result of '{ctx.key}'")
        return previous
    result = wrap(_call_extern(ctx, inputs))
    ctx.runtime.store_frame_result(ctx.key, tick, result)
    return result


@_handles(NodeKind.SWITCH)
def _switch(ctx: NodeContext, inputs: dict[str, Any]) -> Any:
    """Evaluate only the branch named by the selector.

    The selector is matched against slot names with ``str(selector)``; when
    no branch matches, the ``default`` slot is used, else ``None``.
    """
    selector = inputs.get("input")
    slot = str(selector)
    edge = None if slot in {"input", *RUNNABLE_SLOTS} else ctx.edge(slot)
    if edge is None:
        edge = ctx.edge("default")
    if edge is None:
        return None
    logger.debug(f"Switch '{ctx.key}' selected slot '{edge.slot}'")
    return ctx.evaluate(edge.source)


def _element_fn(ctx: NodeContext) -> Runnable | Callable[..., Any]:
    runnable = ctx.runnable("fn")
    if runnable is not None:
        return runnable
    if callable(ctx.node.value):
        return ctx.node.value
    msg = f"{ctx.node.kind} node has neither an 'fn' input nor a callable value"
    raise NodeEvaluationError(ctx.node.id, ctx.graph_id, msg)


def _apply(ctx: NodeContext, fn: Runnable | Callable[..., Any], instance: str, **kwargs: Any) -> Any:
    from ._engine import Runnable  # noqa: PLC0415

    if isinstance(fn, Runnable):
        return fn.invoke(kwargs, instance=append_graph_id(ctx.key, instance))
    return fn(**kwargs)


@_handles(NodeKind.MAP)
def _map(ctx: NodeContext, inputs: dict[str, Any]) -> Any:
    """Apply ``fn`` to each element of ``array``.

    Lists and tuples map to a list in the same order, mappings to a mapping
    with the same keys. A scalar is passed to ``fn`` once and ``None`` maps
    to an empty list. Each element is evaluated as its own graph instance.
    """
    fn = _element_fn(ctx)
    array = inputs.get("array")
    if array is None:
        return []
    if isinstance(array, Mapping):
        keys = list(array)
        joined = Future.all(_apply(ctx, fn, str(k), element=array[k], index=k) for k in keys)
        return joined.then(lambda values: dict(zip(keys, values, strict=True)))
    if isinstance(array, list | tuple):
        return Future.all(_apply(ctx, fn, str(i), element=e, index=i) for i, e in enumerate(array))
    return _apply(ctx, fn, "0", element=array, index=0)


@_handles(NodeKind.FOLD)
def _fold(ctx: NodeContext, inputs: dict[str, Any]) -> Any:
    """Left-fold ``object`` from ``initial`` with ``fn``.

    ``fn`` receives ``previous_value``, ``current_value`` and ``index``.
    Mappings are folded over their values, scalars as a single item.
    """
    fn = _element_fn(ctx)
    items = inputs.get("object")
    if items is None:
        items = []
    elif isinstance(items, Mapping):
        items = list(items.values())
    elif not isinstance(items, list | tuple):
        items = [items]

    def step(previous_value: Any, current_value: Any, index: int) -> Any:
        return _apply(ctx, fn, str(index), previous_value=previous_value, current_value=current_value, index=index)

    return Future.reduce(inputs.get("initial"), items, step)


@_handles(NodeKind.STATE)
def _state(ctx: NodeContext, inputs: dict[str, Any]) -> Any:
    cell = ctx.runtime.state_cell(ctx.graph_id, ctx.node.id)
    return cell.read(lambda: inputs.get("initial", ctx.node.value))


def _nested(ctx: NodeContext, inputs: dict[str, Any], *, memoize: bool | None = None) -> Future[Any]:
    graph = nested_graph(ctx.node, ctx.runtime.graphs)
    if graph is None:
        msg = f"Referenced graph '{ctx.node.ref}' cannot be resolved"
        raise MissingGraphError(ctx.node.id, ctx.graph_id, msg)
    instance_id = append_graph_id(ctx.graph_id, ctx.node.id)
    env = new_env({**inputs, GRAPH_ID_ARG: instance_id})
    scope = ctx.enter(graph, instance_id, env, memoize=memoize)
    return ctx.evaluate(graph.out, scope)


@_handles(NodeKind.REF)
def _ref(ctx: NodeContext, inputs: dict[str, Any]) -> Any:
    return _nested(ctx, inputs)


@_handles(NodeKind.EXECUTABLE)
def _executable(ctx: NodeContext, inputs: dict[str, Any]) -> Any:
    return _nested(ctx, inputs, memoize=False)


@_handles(NodeKind.RETURN)
def _return(ctx: NodeContext, inputs: dict[str, Any]) -> Any:
    """Complete the enclosing scope with ``value`` (or ``display``).

    A mapping on the ``args`` slot extends the environment and a library on
    the ``lib`` slot extends the active library for that evaluation.
    """
    scope = ctx.scope
    args = inputs.get("args")
    if args:
        scope = scope.with_env(combine_env(args, scope.env, node_id=ctx.node.id))
    lib = inputs.get("lib")
    if lib:
        scope = scope.with_lib(merge_lib(scope.lib, lib if isinstance(lib, Lib) else new_lib(lib)))
    edge = ctx.edge("value") or ctx.edge("display")
    if edge is None:
        return None
    if scope is not ctx.scope:
        scope = scope.fresh()
    return ctx.evaluate(edge.source, scope)


@_handles(NodeKind.HTML_ELEMENT)
def _html_element(ctx: NodeContext, inputs: dict[str, Any]) -> Any:
    children = inputs.get("children", ())
    if not isinstance(children, list | tuple):
        children = [children]
    props = inputs.get("props") or {}
    element_type = ctx.node.value or "div"
    return ctx.runtime.host.create_element(element_type, props, [c for c in children if c is not None])


@_handles(NodeKind.EVENT)
def _event(ctx: NodeContext, inputs: dict[str, Any]) -> Any:
    """Latest payload of a channel, pending until the first message."""
    channel = inputs.get("channel", ctx.node.value)
    subscription = ctx.runtime.subscription(ctx.graph_id, ctx.node.id, channel)
    if subscription.has_value:
        return subscription.latest
    return subscription.next()


@_handles(NodeKind.PUBLISH)
def _publish(ctx: NodeContext, inputs: dict[str, Any]) -> Any:
    channel = inputs.get("channel", ctx.node.value)
    value = inputs.get("value")
    ctx.runtime.host.publish(channel, value)
    return value
