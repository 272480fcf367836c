"""
Tests for audio reassembly.

Tests cover:
- Buffered collect in chunk order
- Out-of-order segments rejected
- Streaming yields bytes in order, byte-identical to buffered output
- A mid-stream failure keeps the earlier bytes and then raises
- Closing the stream early cancels the producer and the upstream calls
"""
from __future__ import annotations

import asyncio

import pytest

from edge_tts_proxy.tts.assembler import StreamAssembler
from edge_tts_proxy.tts.client import AudioSegment


async def _segments(items, fail_after=None, delay=0.0):
    for n, (index, data) in enumerate(items):
        if fail_after is not None and n == fail_after:
            raise RuntimeError("upstream went away")
        await asyncio.sleep(delay)
        yield AudioSegment(index=index, data=data)


_ITEMS = [(0, b"aa"), (1, b"bbb"), (2, b"c")]


class TestCollect:
    def test_joins_in_order(self):
        assembler = StreamAssembler()
        audio = asyncio.run(assembler.collect(_segments(_ITEMS)))
        assert audio == b"aabbbc"
        assert assembler.bytes_out == 6
        assert assembler.segments_out == 3

    def test_empty(self):
        assert asyncio.run(StreamAssembler().collect(_segments([]))) == b""

    def test_out_of_order_rejected(self):
        with pytest.raises(RuntimeError, match="arrived after"):
            asyncio.run(StreamAssembler().collect(_segments([(1, b"x"), (0, b"y")])))

    def test_failure_returns_nothing(self):
        with pytest.raises(RuntimeError, match="upstream went away"):
            asyncio.run(StreamAssembler().collect(_segments(_ITEMS, fail_after=2)))


class TestStream:
    def test_stream_matches_buffered(self):
        async def run():
            return [data async for data in StreamAssembler().stream(_segments(_ITEMS))]

        parts = asyncio.run(run())
        assert parts == [b"aa", b"bbb", b"c"]
        assert b"".join(parts) == asyncio.run(StreamAssembler().collect(_segments(_ITEMS)))

    def test_small_queue_still_delivers_everything(self):
        items = [(i, bytes([i % 256])) for i in range(50)]

        async def run():
            return b"".join([data async for data in StreamAssembler(max_pending=1).stream(_segments(items))])

        assert asyncio.run(run()) == bytes(i % 256 for i in range(50))

    def test_partial_output_then_error(self):
        received = []
        assembler = StreamAssembler()

        async def run():
            async for data in assembler.stream(_segments(_ITEMS, fail_after=2)):
                received.append(data)

        with pytest.raises(RuntimeError, match="upstream went away"):
            asyncio.run(run())
        assert received == [b"aa", b"bbb"]
        assert assembler.bytes_out == 5

    def test_early_close_cancels_producer(self):
        closed = []

        async def slow_segments():
            try:
                yield AudioSegment(index=0, data=b"first")
                await asyncio.sleep(10)
                yield AudioSegment(index=1, data=b"never")
            finally:
                closed.append(True)

        async def run():
            body = StreamAssembler().stream(slow_segments())
            first = await body.__anext__()
            await body.aclose()
            return first

        assert asyncio.run(run()) == b"first"
        assert closed == [True]
