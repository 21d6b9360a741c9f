"""Tests for the cold, cancellable event stream and its subscriptions."""

import asyncio
from contextlib import aclosing, asynccontextmanager

import pytest

from gitterstream.errors import ApiConnectionError, DecodeError, GitterError, HttpStatusError
from gitterstream.models import Message
from gitterstream.stream.event_stream import EventStream

URL = "https://stream.gitter.im/v1/rooms/r1/chatMessages"

SCENARIO = b'{"id":"1","text":"hi"}\n\n{"id":"2","text":"yo"}\n'


class FakeResponse:
    def __init__(self, chunks, hold_open=False):
        self.chunks = chunks
        self.hold_open = hold_open

    async def aiter_bytes(self):
        for chunk in self.chunks:
            await asyncio.sleep(0)
            yield chunk
        if self.hold_open:
            await asyncio.Event().wait()


class FakeExecutor:
    """Stands in for RequestExecutor, counting opened and closed connections."""

    def __init__(self, chunks=(), hold_open=False, error=None):
        self.chunks = list(chunks)
        self.hold_open = hold_open
        self.error = error
        self.opened = 0
        self.closed = 0
        self.urls = []

    @asynccontextmanager
    async def open_stream(self, url):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        self.opened += 1
        try:
            yield FakeResponse(self.chunks, self.hold_open)
        finally:
            self.closed += 1


async def _collect(stream):
    return [event async for event in stream]


class TestIteration:
    @pytest.mark.asyncio
    async def test_end_to_end_scenario(self):
        split = SCENARIO.index(b'"yo"')
        executor = FakeExecutor([SCENARIO[:split], SCENARIO[split:]])
        events = await _collect(EventStream(executor, URL, Message))

        assert [(e.id, e.text) for e in events] == [("1", "hi"), ("2", "yo")]
        assert executor.opened == 1
        assert executor.closed == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("size", [1, 4, 9, 64])
    async def test_order_preserved_for_any_chunking(self, size):
        payload = b"".join(
            b'{"id":"%d","text":"m%d"}\n\n' % (i, i) for i in range(20)
        )
        chunks = [payload[i:i + size] for i in range(0, len(payload), size)]
        events = await _collect(EventStream(FakeExecutor(chunks), URL, Message))
        assert [e.id for e in events] == [str(i) for i in range(20)]

    @pytest.mark.asyncio
    async def test_keepalives_only_completes_empty(self):
        executor = FakeExecutor([b"\n", b"\n \n", b"\r\n"])
        assert await _collect(EventStream(executor, URL, Message)) == []
        assert executor.closed == 1

    @pytest.mark.asyncio
    async def test_malformed_frame_raises(self):
        executor = FakeExecutor([b"not-json\n"])
        received = []
        with pytest.raises(DecodeError):
            async for event in EventStream(executor, URL, Message):
                received.append(event)
        assert received == []
        assert executor.closed == 1

    @pytest.mark.asyncio
    async def test_events_before_malformed_frame_are_delivered(self):
        executor = FakeExecutor([b'{"id":"1","text":"a"}\n{"broken\n{"id":"3","text":"c"}\n'])
        received = []
        with pytest.raises(DecodeError):
            async for event in EventStream(executor, URL, Message):
                received.append(event.id)
        assert received == ["1"]

    @pytest.mark.asyncio
    async def test_open_failure_raises(self):
        executor = FakeExecutor(error=HttpStatusError(500, "boom", URL))
        with pytest.raises(HttpStatusError) as exc_info:
            await _collect(EventStream(executor, URL, Message))
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_backpressure_delivers_everything(self):
        payload = b"".join(b'{"id":"%d","text":"x"}\n' % i for i in range(10))
        stream = EventStream(FakeExecutor([payload]), URL, Message, max_pending=1)
        received = []
        async for event in stream:
            await asyncio.sleep(0.001)
            received.append(event.id)
        assert received == [str(i) for i in range(10)]

    @pytest.mark.asyncio
    async def test_breaking_out_closes_connection(self):
        executor = FakeExecutor([b'{"id":"1","text":"a"}\n'], hold_open=True)
        async with aclosing(EventStream(executor, URL, Message).events()) as events:
            async for event in events:
                assert event.id == "1"
                break
        assert executor.opened == 1
        assert executor.closed == 1


class TestColdness:
    @pytest.mark.asyncio
    async def test_nothing_opened_before_consumption(self):
        executor = FakeExecutor([SCENARIO])
        stream = EventStream(executor, URL, Message)
        aiter = stream.__aiter__()
        await asyncio.sleep(0)
        assert executor.opened == 0
        await aiter.aclose()

    @pytest.mark.asyncio
    async def test_each_iteration_opens_new_connection(self):
        executor = FakeExecutor([SCENARIO])
        stream = EventStream(executor, URL, Message)
        first = await _collect(stream)
        second = await _collect(stream)
        assert [e.id for e in first] == [e.id for e in second] == ["1", "2"]
        assert executor.opened == 2
        assert executor.closed == 2

    @pytest.mark.asyncio
    async def test_independent_subscriptions(self):
        executor = FakeExecutor([b'{"id":"1","text":"a"}\n'], hold_open=True)
        stream = EventStream(executor, URL, Message)
        got_a, got_b = asyncio.Event(), asyncio.Event()
        received_b = []

        sub_a = stream.subscribe(lambda e: got_a.set())
        sub_b = stream.subscribe(lambda e: (received_b.append(e.id), got_b.set()))
        await asyncio.wait_for(asyncio.gather(got_a.wait(), got_b.wait()), 1)
        assert executor.opened == 2

        sub_a.cancel()
        await sub_a.wait()
        assert executor.closed == 1
        assert sub_b.active
        assert received_b == ["1"]

        sub_b.cancel()
        await sub_b.wait()
        assert executor.closed == 2


class TestSubscription:
    @pytest.mark.asyncio
    async def test_events_then_complete(self):
        executor = FakeExecutor([SCENARIO])
        received, errors, completed = [], [], []
        sub = EventStream(executor, URL, Message).subscribe(
            received.append, errors.append, lambda: completed.append(True),
        )
        await sub.wait()
        assert [e.text for e in received] == ["hi", "yo"]
        assert errors == []
        assert completed == [True]
        assert not sub.active

    @pytest.mark.asyncio
    async def test_async_callbacks(self):
        received = []

        async def on_event(event):
            await asyncio.sleep(0)
            received.append(event.id)

        sub = EventStream(FakeExecutor([SCENARIO]), URL, Message).subscribe(on_event)
        await sub.wait()
        assert received == ["1", "2"]

    @pytest.mark.asyncio
    async def test_decode_error_delivered_to_on_error(self):
        received, errors, completed = [], [], []
        sub = EventStream(FakeExecutor([b"not-json\n"]), URL, Message).subscribe(
            received.append, errors.append, lambda: completed.append(True),
        )
        await sub.wait()
        assert received == []
        assert len(errors) == 1
        assert isinstance(errors[0], DecodeError)
        assert completed == []
        assert sub.error is errors[0]

    @pytest.mark.asyncio
    async def test_connection_error_delivered_to_on_error(self):
        errors = []
        executor = FakeExecutor(error=ApiConnectionError("refused"))
        sub = EventStream(executor, URL, Message).subscribe(lambda e: None, errors.append)
        await sub.wait()
        assert isinstance(errors[0], ApiConnectionError)

    @pytest.mark.asyncio
    async def test_error_without_handler_is_recorded(self):
        sub = EventStream(FakeExecutor([b"{\n"]), URL, Message).subscribe(lambda e: None)
        await sub.wait()
        assert isinstance(sub.error, DecodeError)

    @pytest.mark.asyncio
    async def test_cancel_closes_connection_once(self):
        executor = FakeExecutor([b'{"id":"1","text":"a"}\n'], hold_open=True)
        first = asyncio.Event()
        received, errors, completed = [], [], []

        def on_event(event):
            received.append(event)
            first.set()

        sub = EventStream(executor, URL, Message).subscribe(
            on_event, errors.append, lambda: completed.append(True),
        )
        await asyncio.wait_for(first.wait(), 1)

        sub.cancel()
        sub.cancel()
        await sub.wait()
        sub.cancel()

        assert executor.opened == 1
        assert executor.closed == 1
        assert len(received) == 1
        assert errors == []
        assert completed == []
        assert sub.cancelled
        assert not sub.active

    @pytest.mark.asyncio
    async def test_cancel_before_start_opens_nothing(self):
        executor = FakeExecutor([SCENARIO])
        sub = EventStream(executor, URL, Message).subscribe(lambda e: None)
        sub.cancel()
        await sub.wait()
        assert executor.opened == 0

    @pytest.mark.asyncio
    async def test_context_manager_cancels(self):
        executor = FakeExecutor([b'{"id":"1","text":"a"}\n'], hold_open=True)
        first = asyncio.Event()
        async with EventStream(executor, URL, Message).subscribe(lambda e: first.set()) as sub:
            await asyncio.wait_for(first.wait(), 1)
        assert not sub.active
        assert executor.closed == 1

    @pytest.mark.asyncio
    async def test_resubscribe_starts_with_empty_buffer(self):
        executor = FakeExecutor([b'{"id":"1","text":"a"}\n{"id":"2","te'])
        stream = EventStream(executor, URL, Message)
        first = await _collect(stream)
        executor.chunks = [b'"xt":"b"}\n']
        with pytest.raises(DecodeError):
            await _collect(stream)
        assert [e.id for e in first] == ["1"]
        assert executor.closed == 2


class TestCancelFromCallback:
    @pytest.mark.asyncio
    async def test_sync_callback_cancel_stops_buffered_delivery(self):
        payload = b"".join(b'{"id":"%d","text":"x"}\n' % i for i in range(10))
        executor = FakeExecutor([payload], hold_open=True)
        received, completed = [], []

        def on_event(event):
            received.append(event.id)
            sub.cancel()

        sub = EventStream(executor, URL, Message).subscribe(
            on_event, on_complete=lambda: completed.append(True),
        )
        await asyncio.wait_for(sub.wait(), 1)

        assert received == ["0"]
        assert completed == []
        assert executor.closed == 1
        assert sub.cancelled

    @pytest.mark.asyncio
    async def test_stop_after_first_n(self):
        payload = b"".join(b'{"id":"%d","text":"x"}\n' % i for i in range(10))
        executor = FakeExecutor([payload], hold_open=True)
        received = []

        async def on_event(event):
            received.append(event.id)
            await asyncio.sleep(0)
            if len(received) == 3:
                sub.cancel()

        sub = EventStream(executor, URL, Message).subscribe(on_event)
        await asyncio.wait_for(sub.wait(), 1)

        assert received == ["0", "1", "2"]
        assert executor.closed == 1


class TestFailureEdges:
    @pytest.mark.asyncio
    async def test_invalid_utf8_surfaces_as_decode_error(self):
        executor = FakeExecutor([b'{"id":"1","text":"\xff"}\n'])
        with pytest.raises(DecodeError) as exc_info:
            await _collect(EventStream(executor, URL, Message))
        assert isinstance(exc_info.value, GitterError)
        assert executor.closed == 1

    @pytest.mark.asyncio
    async def test_failing_error_callback_is_contained(self):
        def on_error(exc):
            raise RuntimeError("handler broke")

        sub = EventStream(FakeExecutor([b"not-json\n"]), URL, Message).subscribe(
            lambda e: None, on_error,
        )
        await sub.wait()
        assert isinstance(sub.error, DecodeError)
        assert sub._task.exception() is None

    @pytest.mark.asyncio
    async def test_failing_complete_callback_is_contained(self):
        def on_complete():
            raise RuntimeError("handler broke")

        sub = EventStream(FakeExecutor([SCENARIO]), URL, Message).subscribe(
            lambda e: None, on_complete=on_complete,
        )
        await sub.wait()
        assert sub.error is None
        assert sub._task.exception() is None
