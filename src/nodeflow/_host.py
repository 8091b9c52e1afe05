"""Contracts with the host environment and the diagnostics sink.

The runtime never reaches into its host directly. Animation-frame ticks,
UI element construction and event channels are obtained through ``Host``,
and failures are handed to a ``DiagnosticsSink``. ``LocalHost`` and
``LoggingSink`` are in-process defaults suitable for scripts and tests.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from nodeflow._errors import NodeEvaluationError
    from nodeflow._store import Graph, Node

logger = logging.getLogger(__name__)

type Unsubscribe = Callable[[], None]


@dataclass(frozen=True, slots=True)
class Message:
    """A value published on a channel."""

    channel: str
    data: Any
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True, slots=True)
class TextElement:
    text: str


@dataclass(frozen=True, slots=True)
class Element:
    """A UI element handle built by the host.

    Attributes:
        type: Element type, such as ``div``.
        props: Element properties.
        children: Child elements, in order.

    """

    type: str
    props: Mapping[str, Any] = field(default_factory=dict)
    children: tuple[Element | TextElement, ...] = ()


class Host(Protocol):
    """Services the host environment provides to the runtime."""

    def frame(self) -> int:
        """Return the current animation-frame tick."""
        ...

    def create_element(self, element_type: str, props: Mapping[str, Any], children: Sequence[Any]) -> Any:
        """Construct a UI element handle."""
        ...

    def subscribe(self, channel: str, callback: Callable[[Message], None]) -> Unsubscribe:
        """Register ``callback`` for messages on ``channel``."""
        ...

    def publish(self, channel: str, data: Any) -> None:
        """Send ``data`` to every subscriber of ``channel``."""
        ...


class DiagnosticsSink(Protocol):
    """Receives evaluation failures attributed to a node."""

    def report_error(self, error: NodeEvaluationError, graph: Graph, node: Node, graph_id: str) -> None: ...


class PubSub:
    """In-process publish/subscribe bus with a bounded per-channel history."""

    def __init__(self, max_history: int = 100) -> None:
        self.max_history = max_history
        self._subscribers: dict[str, list[Callable[[Message], None]]] = {}
        self._history: dict[str, deque[Message]] = {}

    def subscribe(self, channel: str, callback: Callable[[Message], None]) -> Unsubscribe:
        self._subscribers.setdefault(channel, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(channel)
            if callbacks is None or callback not in callbacks:
                return
            callbacks.remove(callback)
            if not callbacks:
                del self._subscribers[channel]

        return unsubscribe

    def publish(self, channel: str, data: Any) -> None:
        """Record ``data`` in the channel history and notify subscribers.

        A failing subscriber is logged and does not prevent delivery to the
        remaining subscribers.
        """
        message = Message(channel=channel, data=data)
        self._history.setdefault(channel, deque(maxlen=self.max_history)).append(message)
        for callback in list(self._subscribers.get(channel, ())):
            try:
                callback(message)
            except Exception:
                logger.exception(f"Subscriber of channel '{channel}' failed")

    def latest(self, channel: str) -> Message | None:
        history = self._history.get(channel)
        return history[-1] if history else None

    def history(self, channel: str, limit: int | None = None) -> list[Message]:
        messages = list(self._history.get(channel, ()))
        return messages[-limit:] if limit else messages

    def channels(self) -> list[str]:
        """Channels with at least one subscriber."""
        return list(self._subscribers)

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    def clear_history(self, channel: str | None = None) -> None:
        if channel is None:
            self._history.clear()
        else:
            self._history.pop(channel, None)


class FrameClock:
    """Monotonic animation-frame counter advanced by the host loop."""

    def __init__(self) -> None:
        self.tick = 0

    def advance(self) -> int:
        self.tick += 1
        return self.tick


class LocalHost:
    """In-process host backed by a ``PubSub`` bus and a ``FrameClock``."""

    def __init__(self, max_history: int = 100) -> None:
        self.bus = PubSub(max_history)
        self.clock = FrameClock()

    def frame(self) -> int:
        return self.clock.tick

    def create_element(self, element_type: str, props: Mapping[str, Any], children: Sequence[Any]) -> Element:
        handles = tuple(c if isinstance(c, Element | TextElement) else TextElement(str(c)) for c in children)
        return Element(type=element_type, props=dict(props), children=handles)

    def subscribe(self, channel: str, callback: Callable[[Message], None]) -> Unsubscribe:
        return self.bus.subscribe(channel, callback)

    def publish(self, channel: str, data: Any) -> None:
        self.bus.publish(channel, data)


class LoggingSink:
    """Diagnostics sink that reports through ``logging``."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or logger

    def report_error(self, error: NodeEvaluationError, graph: Graph, node: Node, graph_id: str) -> None:
        self.log.error(f"Node '{node.id}' ({node.kind}) of graph '{graph_id}' failed: {error}")


class EventSubscription:
    """A channel subscription remembering the latest payload.

    ``next()`` waits for the following message; ``latest`` is available
    once at least one message has arrived.
    """

    def __init__(self, host: Host, channel: str, on_event: Callable[[Message], None] | None = None) -> None:
        self.channel = channel
        self.received = 0
        self._latest: Any = None
        self._on_event = on_event
        self._waiters: list[asyncio.Future[Any]] = []
        self._unsubscribe: Unsubscribe | None = host.subscribe(channel, self._receive)

    @property
    def has_value(self) -> bool:
        return self.received > 0

    @property
    def latest(self) -> Any:
        return self._latest

    def _receive(self, message: Message) -> None:
        self.received += 1
        self._latest = message.data
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(message.data)
        if self._on_event is not None:
            self._on_event(message)

    def next(self) -> asyncio.Future[Any]:
        """Wait for the following message. Requires a running event loop."""
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        return waiter

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for waiter in self._waiters:
            waiter.cancel()
        self._waiters.clear()
