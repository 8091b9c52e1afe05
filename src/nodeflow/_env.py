"""Environments (scoped parameter bindings) and libraries (named primitives)."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping

GRAPH_ID_ARG = "__graphid"

_EMPTY: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True, slots=True)
class Env:
    """Immutable parameter bindings with parent fallback.

    Lookups that miss in ``data`` fall through to ``parent``. Extending an
    environment returns a new one sharing the parent chain, so sibling
    evaluations holding the same parent never observe each other's bindings.

    Attributes:
        data: Bindings of this scope (read-only).
        parent: Enclosing scope, if any.
        output: Optional designated output binding.
        node_id: Node that created this scope, if any.

    """

    data: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    parent: Env | None = None
    output: str | None = None
    node_id: str | None = None

    def lookup(self, name: str) -> Any:
        """Resolve a binding through the parent chain.

        Raises:
            KeyError: If no scope binds ``name``.

        """
        env: Env | None = self
        while env is not None:
            if name in env.data:
                return env.data[name]
            env = env.parent
        raise KeyError(name)

    def get(self, name: str, default: Any = None) -> Any:
        try:
            return self.lookup(name)
        except KeyError:
            return default

    def __contains__(self, name: object) -> bool:
        env: Env | None = self
        while env is not None:
            if name in env.data:
                return True
            env = env.parent
        return False

    def chain(self) -> Iterator[Env]:
        """Iterate from this scope outwards."""
        env: Env | None = self
        while env is not None:
            yield env
            env = env.parent

    def flatten(self) -> dict[str, Any]:
        """All visible bindings, inner scopes shadowing outer ones."""
        merged: dict[str, Any] = {}
        for env in reversed(list(self.chain())):
            merged.update(env.data)
        return merged

    def extend(self, args: Mapping[str, Any], node_id: str | None = None, output: str | None = None) -> Env:
        return combine_env(args, self, node_id, output)


def new_env(args: Mapping[str, Any] | None = None, output: str | None = None, parent: Env | None = None) -> Env:
    """Build a fresh environment binding ``args``.

    Args:
        args: Bindings for the new scope. Copied, never retained.
        output: Optional designated output binding.
        parent: Scope that unresolved lookups fall through to.

    Returns:
        A new Env. ``parent`` is not modified.

    """
    return Env(data=MappingProxyType(dict(args or {})), parent=parent, output=output)


def combine_env(
    args: Mapping[str, Any],
    env: Env,
    node_id: str | None = None,
    output: str | None = None,
) -> Env:
    """Extend ``env`` with additional bindings for a nested scope.

    The graph id binding of ``env`` is carried into the new scope when
    ``args`` does not provide one.

    Raises:
        TypeError: If ``args`` is itself an Env.

    """
    if isinstance(args, Env):
        msg = "Can't create an env with env data"
        raise TypeError(msg)
    data = dict(args)
    if GRAPH_ID_ARG not in data and GRAPH_ID_ARG in env:
        data[GRAPH_ID_ARG] = env.lookup(GRAPH_ID_ARG)
    return Env(data=MappingProxyType(data), parent=env, output=output, node_id=node_id)


@dataclass(frozen=True, slots=True)
class Extern:
    """A named primitive callable from ``extern`` nodes.

    Attributes:
        fn: The implementation. It may return an awaitable.
        args: Parameter names to pass. ``None`` passes every resolved input.
            The reserved names ``_node``, ``_lib``, ``_env`` and ``_graph_id``
            receive the calling node, the active library, the active
            environment and the graph instance id.
        pure: Whether the result depends only on the passed inputs. Results
            of pure externs are reused across requests while the inputs are
            identical objects, so a zero-input pure extern runs once. Clocks
            and random sources set this to False.

    """

    fn: Callable[..., Any]
    args: tuple[str, ...] | None = None
    pure: bool = True


@dataclass(frozen=True, slots=True)
class Lib:
    """Immutable registry of named primitives."""

    data: Mapping[str, Extern] = field(default_factory=lambda: MappingProxyType({}))

    def get(self, name: str) -> Extern | None:
        return self.data.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.data

    def __len__(self) -> int:
        return len(self.data)

    def names(self) -> list[str]:
        return sorted(self.data)


def _as_extern(entry: Extern | Callable[..., Any]) -> Extern:
    return entry if isinstance(entry, Extern) else Extern(fn=entry)


def new_lib(entries: Mapping[str, Extern | Callable[..., Any]] | None = None) -> Lib:
    """Build a library from named implementations (plain callables or Externs)."""
    return Lib(data=MappingProxyType({name: _as_extern(e) for name, e in (entries or {}).items()}))


def merge_lib(a: Lib | Mapping[str, Extern | Callable[..., Any]] | None, b: Lib) -> Lib:
    """Merge two libraries; entries of ``b`` win on name collisions."""
    if a is None:
        return b
    base = a if isinstance(a, Lib) else new_lib(a)
    if base is b:
        return b
    return Lib(data=MappingProxyType({**base.data, **b.data}))
