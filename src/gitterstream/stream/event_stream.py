"""Cold, cancellable sequences of realtime events.

Nothing happens until a consumer starts iterating (or subscribes). Each
consumer gets its own connection: a pump task reads chunks, decodes
frames and puts events on a bounded queue, and the consumer drains that
queue. A full queue suspends the pump, so a slow consumer throttles the
read side instead of losing events. End-of-stream and errors travel
through the same queue, behind every event decoded before them.

A malformed frame ends the sequence with a DecodeError once the events
decoded before it have been handed out.
"""

from __future__ import annotations

import asyncio
import inspect
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, Generic, TypeVar

import structlog

from gitterstream.errors import DecodeError
from gitterstream.models import Message

from .line_decoder import decode_event, iter_frames

log = structlog.get_logger()

T = TypeVar("T")

_END = object()


class _Failure:
    __slots__ = ("error",)

    def __init__(self, error: Exception) -> None:
        self.error = error


class EventStream(Generic[T]):
    """A re-iterable stream of typed events read from one streaming URL.

    Args:
        executor: Object providing ``open_stream(url)`` as an async
            context manager yielding a response with ``aiter_bytes()``.
        url: Absolute URL of the streaming endpoint.
        event_type: Type each frame is validated into.
        max_pending: Decoded events allowed to wait for the consumer
            before reading pauses.
    """

    def __init__(
        self,
        executor: Any,
        url: str,
        event_type: type[T] = Message,  # type: ignore[assignment]
        max_pending: int = 64,
    ) -> None:
        self.executor = executor
        self.url = url
        self.event_type = event_type
        self.max_pending = max_pending

    def __aiter__(self) -> AsyncIterator[T]:
        return self.events()

    async def events(self) -> AsyncIterator[T]:
        """Open a new connection and yield its events in arrival order.

        Closing the generator (or cancelling the task consuming it)
        stops the pump and closes the connection.
        """
        channel: asyncio.Queue[Any] = asyncio.Queue(maxsize=self.max_pending)
        pump = asyncio.create_task(self._pump(channel))
        try:
            while True:
                item = await channel.get()
                if item is _END:
                    return
                if isinstance(item, _Failure):
                    raise item.error
                yield item
        finally:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)

    async def _pump(self, channel: asyncio.Queue[Any]) -> None:
        count = 0
        try:
            async with self.executor.open_stream(self.url) as response:
                async with aclosing(iter_frames(response.aiter_bytes())) as frames:
                    async for line in frames:
                        await channel.put(decode_event(line, self.event_type))
                        count += 1
        except DecodeError as exc:
            log.error("frame_decode_failed", url=self.url, error=str(exc), raw=exc.raw[:200])
            await channel.put(_Failure(exc))
            return
        except Exception as exc:
            log.error("stream_failed", url=self.url, error=str(exc), events=count)
            await channel.put(_Failure(exc))
            return

        log.info("stream_completed", url=self.url, events=count)
        await channel.put(_END)

    def subscribe(
        self,
        on_event: Callable[[T], Any],
        on_error: Callable[[Exception], Any] | None = None,
        on_complete: Callable[[], Any] | None = None,
    ) -> Subscription:
        """Start consuming in a background task. Must be called with a running loop.

        Callbacks may be plain functions or coroutine functions. Each
        subscription opens its own connection.
        """
        return Subscription(self, on_event, on_error, on_complete)


class Subscription:
    """Handle for one background consumer of an EventStream."""

    def __init__(
        self,
        stream: EventStream[Any],
        on_event: Callable[[Any], Any],
        on_error: Callable[[Exception], Any] | None = None,
        on_complete: Callable[[], Any] | None = None,
    ) -> None:
        self.stream = stream
        self._on_event = on_event
        self._on_error = on_error
        self._on_complete = on_complete
        self._cancelled = False
        self.error: Exception | None = None
        self._task = asyncio.create_task(self._run())

    @property
    def active(self) -> bool:
        return not self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def _run(self) -> None:
        log.debug("subscription_started", url=self.stream.url)
        try:
            async with aclosing(self.stream.events()) as events:
                async for event in events:
                    if self._cancelled:
                        break
                    await _invoke(self._on_event, event)
        except Exception as exc:
            self.error = exc
            if self._cancelled:
                return
            if self._on_error is None:
                log.error("subscription_failed_unhandled", url=self.stream.url, error=str(exc))
                return
            await self._notify(self._on_error, exc)
            return

        if self._cancelled:
            return
        if self._on_complete is not None:
            await self._notify(self._on_complete)

    async def _notify(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            await _invoke(callback, *args)
        except Exception as exc:
            log.error(
                "subscription_callback_failed",
                url=self.stream.url,
                callback=getattr(callback, "__name__", repr(callback)),
                error=str(exc),
            )

    def cancel(self) -> None:
        """Stop the subscription and close its connection. Safe to call repeatedly."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._task.done():
            return
        log.debug("subscription_cancelled", url=self.stream.url)
        # Called from a callback: the delivery loop stops on the flag.
        if asyncio.current_task() is not self._task:
            self._task.cancel()

    async def wait(self) -> None:
        """Wait until the subscription has completed, failed or been cancelled."""
        await asyncio.wait({self._task})

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cancel()
        await self.wait()


async def _invoke(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result
