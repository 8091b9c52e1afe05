"""Uniform wrapper over already-available and pending results.

A node's evaluation may finish immediately or only after an external event
(an animation frame, a UI event, an asynchronous extern). ``Future`` lets the
same evaluation code handle both: combinators run synchronously while every
input is available and switch to ``asyncio`` only once something is pending.

Example:
    >>> Future.ready(2).then(lambda x: x + 1).result()
    3

"""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Any

from nodeflow._errors import FuturePendingError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Generator, Iterable

type ErrorHandler = Callable[[Exception], Any]


async def _resolve(value: Any) -> Any:
    """Await until the value is neither a Future nor an awaitable."""
    while isinstance(value, Future) or inspect.isawaitable(value):
        value = await value
    return value


class Future[T]:
    """A result that is either already available or pending.

    Futures are single-value: each represents one eventual value. A pending
    source is scheduled at most once, however many consumers await it.

    An optional error handler receives failures of the pending source or of
    ``then`` callbacks; its return value replaces the failed result. Without
    a handler the error propagates to whoever resolves the Future.

    The pending source is a native awaitable, or a function producing one
    that is called when the Future is first awaited.
    """

    __slots__ = ("_on_error", "_source", "_task", "_value")

    def __init__(
        self,
        value: Any = None,
        *,
        source: Awaitable[Any] | Callable[[], Awaitable[Any]] | None = None,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self._value = value
        self._source = source
        self._task: asyncio.Future[Any] | None = None
        self._on_error = on_error

    @classmethod
    def ready(cls, value: T, on_error: ErrorHandler | None = None) -> Future[T]:
        """Wrap an already-available value."""
        return cls(value, on_error=on_error)

    @classmethod
    def pending(cls, awaitable: Awaitable[T], on_error: ErrorHandler | None = None) -> Future[T]:
        """Wrap a native pending computation."""
        return cls(source=awaitable, on_error=on_error)

    @property
    def is_ready(self) -> bool:
        return self._source is None

    @property
    def on_error(self) -> ErrorHandler | None:
        return self._on_error

    def result(self) -> T:
        """Return the value of an already-available Future.

        Raises:
            FuturePendingError: If the Future is pending.

        """
        if self._source is not None:
            msg = "Result is pending; await it instead"
            raise FuturePendingError(msg)
        return self._value

    def _shared(self, source: Awaitable[Any] | Callable[[], Awaitable[Any]]) -> asyncio.Future[Any]:
        if self._task is None:
            self._task = asyncio.ensure_future(source if inspect.isawaitable(source) else source())
        return self._task

    async def _raw(self) -> Any:
        source = self._source
        if source is None:
            return self._value
        return await _resolve(await self._shared(source))

    async def _handled(self) -> Any:
        try:
            return await self._raw()
        except Exception as e:
            if self._on_error is None:
                raise
            return await _resolve(self._on_error(e))

    def __await__(self) -> Generator[Any, None, T]:
        return self._handled().__await__()

    def then[S](self, fn: Callable[[T], S | Future[S] | Awaitable[S]]) -> Future[S]:
        """Compose ``fn`` onto this Future.

        If the value is available ``fn`` runs immediately, without suspending.
        Otherwise ``fn`` runs once the value arrives and the result is pending.
        The error handler is carried over to the composed Future.
        """
        if self._source is None:
            try:
                return wrap(fn(self._value), self._on_error)
            except Exception as e:
                if self._on_error is None:
                    raise
                return wrap(self._on_error(e), self._on_error)

        async def chained() -> Any:
            return await _resolve(fn(await self._raw()))

        return Future(source=chained, on_error=self._on_error)

    def catch(self, handler: ErrorHandler) -> Future[T]:
        """Route failures not handled by this Future's own handler to ``handler``."""
        if self._source is None:
            return Future(self._value, on_error=handler)
        return Future(source=self._handled, on_error=handler)

    def finalize(self, callback: Callable[[], object]) -> Future[T]:
        """Run ``callback`` once the Future settles, whether it succeeds or fails."""
        if self._source is None:
            callback()
            return self

        async def settled() -> Any:
            try:
                return await self._handled()
            finally:
                callback()

        return Future(source=settled)

    @staticmethod
    def all(items: Iterable[Any], on_error: ErrorHandler | None = None) -> Future[list[Any]]:
        """Join Futures and raw values into one Future over the list of values.

        Output order matches input order regardless of completion order. If
        every item is available the result is available immediately.
        """
        wrapped = [wrap(item) for item in items]
        if all(w.is_ready for w in wrapped):
            return Future([w._value for w in wrapped], on_error=on_error)  # noqa: SLF001

        async def gathered() -> list[Any]:
            return list(await asyncio.gather(*(w._handled() for w in wrapped)))  # noqa: SLF001

        return Future(source=gathered, on_error=on_error)

    @staticmethod
    def reduce(
        initial: Any,
        items: Iterable[Any],
        fn: Callable[..., Any],
        on_error: ErrorHandler | None = None,
    ) -> Future[Any]:
        """Left-fold ``items`` strictly in order.

        ``fn`` is called with keyword arguments ``previous_value``,
        ``current_value`` and ``index``. When a step is pending, later steps
        are sequenced after it, never run concurrently.
        """
        values = list(items)

        def step(acc: Any, index: int) -> Future[Any]:
            while index < len(values):
                result = wrap(fn(previous_value=acc, current_value=values[index], index=index))
                index += 1
                if not result.is_ready:
                    following = index
                    return result.then(lambda value: step(value, following))
                acc = result.result()
            return Future(acc, on_error=on_error)

        return wrap(initial, on_error).then(lambda acc: step(acc, 0))

    def __repr__(self) -> str:
        if self._source is None:
            return f"Future.ready({self._value!r})"
        return f"Future.pending({self._source!r})"


def wrap[T](value: T | Future[T] | Awaitable[T], on_error: ErrorHandler | None = None) -> Future[T]:
    """Wrap a raw value, a native awaitable, or an existing Future.

    An existing Future is returned as is; given ``on_error`` it is wrapped so
    that its unhandled failures reach the handler.
    """
    if isinstance(value, Future):
        return value if on_error is None or on_error is value.on_error else value.catch(on_error)
    if inspect.isawaitable(value):
        return Future(source=value, on_error=on_error)
    return Future(value, on_error=on_error)
