"""In-process subscription channels.

:class:`EventChannel` fans events out to registered callbacks.
:class:`SnapshotStream` adds "live collection" semantics on top: the latest
value is replayed to every new subscriber, and a terminal error (for example
a permission failure) closes the stream for everyone.  Both are transport
agnostic; a store adapter publishes into them and the board engine consumes
them, either through callbacks or with ``async for`` via :meth:`iterate`.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable, Generic, Optional, TypeVar

from loguru import logger

T = TypeVar("T")

Callback = Callable[[Any], None]
ErrorCallback = Callable[[BaseException], None]


class Subscription:
    """Handle returned by ``subscribe``; call :meth:`unsubscribe` to stop delivery."""

    def __init__(self, channel: "EventChannel[Any]", on_next: Callback, on_error: Optional[ErrorCallback]) -> None:
        self._channel = channel
        self.on_next = on_next
        self.on_error = on_error
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._channel._detach(self)


class EventChannel(Generic[T]):
    """Synchronous fan-out of events to subscribers.

    A subscriber callback that raises is logged and skipped; it never stops
    delivery to the others.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._subs: list[Subscription] = []
        self._seq = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def subscribe(self, on_next: Callable[[T], None], on_error: Optional[ErrorCallback] = None) -> Subscription:
        sub = Subscription(self, on_next, on_error)
        self._subs.append(sub)
        return sub

    def _detach(self, sub: Subscription) -> None:
        if sub in self._subs:
            self._subs.remove(sub)

    def publish(self, value: T) -> None:
        self._seq += 1
        for sub in list(self._subs):
            if not sub.active:
                continue
            try:
                sub.on_next(value)
            except Exception:
                logger.exception("Subscriber of {} failed on event #{}", self.name, self._seq)


class SnapshotStream(EventChannel[T]):
    """A channel that remembers its latest value and can terminate with an error."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._latest: Optional[T] = None
        self._has_value = False
        self._error: Optional[BaseException] = None

    @property
    def latest(self) -> Optional[T]:
        return self._latest

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def closed(self) -> bool:
        return self._error is not None

    def subscribe(self, on_next: Callable[[T], None], on_error: Optional[ErrorCallback] = None) -> Subscription:
        if self._error is not None:
            sub = Subscription(self, on_next, on_error)
            sub.active = False
            if on_error is not None:
                on_error(self._error)
            return sub
        sub = super().subscribe(on_next, on_error)
        if self._has_value:
            try:
                on_next(self._latest)  # type: ignore[arg-type]
            except Exception:
                logger.exception("Subscriber of {} failed on replay", self.name)
        return sub

    def publish(self, value: T) -> None:
        if self._error is not None:
            logger.debug("Dropping publish on closed stream {}", self.name)
            return
        self._latest = value
        self._has_value = True
        super().publish(value)

    def fail(self, error: BaseException) -> None:
        """Deliver a terminal error and close the stream."""
        if self._error is not None:
            return
        self._error = error
        subs, self._subs = list(self._subs), []
        for sub in subs:
            if not sub.active:
                continue
            sub.active = False
            if sub.on_error is None:
                continue
            try:
                sub.on_error(error)
            except Exception:
                logger.exception("Error handler of {} failed", self.name)

    async def iterate(self) -> AsyncIterator[T]:
        """Yield snapshots as they are published; raise the terminal error, if any."""
        queue: asyncio.Queue[tuple[bool, Any]] = asyncio.Queue()
        sub = self.subscribe(
            lambda value: queue.put_nowait((True, value)),
            lambda exc: queue.put_nowait((False, exc)),
        )
        try:
            while True:
                ok, item = await queue.get()
                if not ok:
                    raise item
                yield item
        finally:
            sub.unsubscribe()


class ErrorChannel(EventChannel[BaseException]):
    """Out-of-band failures (store rejections, stream errors) for the UI layer."""

    def __init__(self, name: str = "errors") -> None:
        super().__init__(name)
        self.last_error: Optional[BaseException] = None

    def publish(self, value: BaseException) -> None:
        self.last_error = value
        super().publish(value)
