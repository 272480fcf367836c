"""
Tests for the chunk fan-out scheduler.

Tests cover:
- Batch partitioning (ceil(M / K) batches)
- In-flight bound in both modes
- Output order under shuffled completion times
- Failure cancels the rest of the job
- Early close of the segment iterator
- Constructor validation
"""
from __future__ import annotations

import asyncio
import math
import random

import pytest

from edge_tts_proxy.tts.chunker import TextChunk
from edge_tts_proxy.tts.client import AudioSegment
from edge_tts_proxy.tts.scheduler import BatchScheduler


def _chunks(n: int):
    return [TextChunk(index=i, content=f"c{i}") for i in range(n)]


class Recorder:
    """Fake per-chunk synthesis with controllable delays and failures."""

    def __init__(self, delays=None, fail_index=None):
        self.delays = delays or {}
        self.fail_index = fail_index
        self.started = []
        self.cancelled = []
        self.completed = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, chunk: TextChunk) -> AudioSegment:
        self.started.append(chunk.index)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(chunk.index, 0))
            if chunk.index == self.fail_index:
                raise RuntimeError(f"chunk {chunk.index} failed")
        except asyncio.CancelledError:
            self.cancelled.append(chunk.index)
            raise
        finally:
            self.in_flight -= 1
        self.completed.append(chunk.index)
        return AudioSegment(index=chunk.index, data=chunk.content.encode())


class TestPartition:
    @pytest.mark.parametrize("m,k", [(1, 10), (10, 10), (11, 10), (25, 4), (7, 1)])
    def test_batch_count(self, m, k):
        scheduler = BatchScheduler(Recorder(), concurrency=k)
        batches = scheduler.partition(_chunks(m))
        assert len(batches) == math.ceil(m / k)
        assert all(len(b) <= k for b in batches)
        assert [c.index for b in batches for c in b] == list(range(m))

    def test_empty(self):
        scheduler = BatchScheduler(Recorder(), concurrency=3)
        assert scheduler.partition([]) == []
        assert asyncio.run(scheduler.run([])) == []


class TestBatchedMode:
    def test_order_preserved_under_shuffled_delays(self):
        rng = random.Random(7)
        delays = {i: rng.uniform(0, 0.02) for i in range(23)}
        recorder = Recorder(delays=delays)
        scheduler = BatchScheduler(recorder, concurrency=5)

        segments = asyncio.run(scheduler.run(_chunks(23)))

        assert [s.index for s in segments] == list(range(23))
        assert b"".join(s.data for s in segments) == b"".join(f"c{i}".encode() for i in range(23))
        assert scheduler.stats.batches == 5

    def test_in_flight_bounded(self):
        recorder = Recorder(delays={i: 0.01 for i in range(30)})
        scheduler = BatchScheduler(recorder, concurrency=4)

        asyncio.run(scheduler.run(_chunks(30)))

        assert recorder.max_in_flight <= 4
        assert scheduler.stats.max_in_flight <= 4
        assert scheduler.stats.chunks_done == 30

    def test_next_batch_waits_for_previous(self):
        """Batch 2 does not start until the slow member of batch 1 is done."""
        recorder = Recorder(delays={0: 0.05})
        scheduler = BatchScheduler(recorder, concurrency=2)

        asyncio.run(scheduler.run(_chunks(4)))

        assert recorder.completed.index(0) < recorder.started.index(2)

    def test_failure_cancels_batch_and_stops(self):
        recorder = Recorder(delays={0: 0.0, 1: 0.0, 2: 0.2, 3: 0.2}, fail_index=1)
        scheduler = BatchScheduler(recorder, concurrency=4)

        with pytest.raises(RuntimeError, match="chunk 1 failed"):
            asyncio.run(scheduler.run(_chunks(8)))

        assert set(recorder.cancelled) == {2, 3}
        assert max(recorder.started) == 3

    def test_segments_before_failure_already_yielded(self):
        recorder = Recorder(fail_index=3)
        scheduler = BatchScheduler(recorder, concurrency=2)
        received = []

        async def consume():
            async for segment in scheduler.iter_segments(_chunks(6)):
                received.append(segment.index)

        with pytest.raises(RuntimeError):
            asyncio.run(consume())
        assert received == [0, 1]


class TestPoolMode:
    def test_order_preserved(self):
        rng = random.Random(11)
        delays = {i: rng.uniform(0, 0.02) for i in range(17)}
        recorder = Recorder(delays=delays)
        scheduler = BatchScheduler(recorder, concurrency=3, mode="pool")

        segments = asyncio.run(scheduler.run(_chunks(17)))

        assert [s.index for s in segments] == list(range(17))
        assert recorder.max_in_flight <= 3

    def test_slow_chunk_does_not_block_later_starts(self):
        recorder = Recorder(delays={0: 0.05})
        scheduler = BatchScheduler(recorder, concurrency=2, mode="pool")

        asyncio.run(scheduler.run(_chunks(5)))

        # Chunks 2..4 ran in the free slot while chunk 0 was still pending
        assert recorder.completed[-1] == 0
        assert scheduler.stats.max_in_flight == 2

    def test_failure_cancels_pending(self):
        recorder = Recorder(delays={i: 0.2 for i in range(1, 6)}, fail_index=0)
        scheduler = BatchScheduler(recorder, concurrency=3, mode="pool")

        with pytest.raises(RuntimeError, match="chunk 0 failed"):
            asyncio.run(scheduler.run(_chunks(6)))

        assert recorder.completed == []
        # 1 and 2 held the other slots; a waiter may have started before the cancel
        assert {1, 2} <= set(recorder.cancelled)

    def test_failure_of_later_chunk_surfaces(self):
        """A failing later chunk aborts even while an earlier one is awaited."""
        recorder = Recorder(delays={0: 0.2, 1: 0.0}, fail_index=1)
        scheduler = BatchScheduler(recorder, concurrency=2, mode="pool")

        with pytest.raises(RuntimeError, match="chunk 1 failed"):
            asyncio.run(scheduler.run(_chunks(2)))
        assert 0 in recorder.cancelled


class TestEarlyClose:
    def test_closing_iterator_cancels_in_flight(self):
        recorder = Recorder(delays={i: (0.0 if i < 2 else 0.5) for i in range(6)})
        scheduler = BatchScheduler(recorder, concurrency=2, mode="pool")

        async def consume_one():
            it = scheduler.iter_segments(_chunks(6))
            first = await it.__anext__()
            await it.aclose()
            return first

        first = asyncio.run(consume_one())
        assert first.index == 0
        assert all(i >= 2 for i in recorder.cancelled)
        assert len(recorder.completed) < 6


class TestValidation:
    def test_bad_concurrency(self):
        with pytest.raises(ValueError):
            BatchScheduler(Recorder(), concurrency=0)

    def test_bad_mode(self):
        with pytest.raises(ValueError):
            BatchScheduler(Recorder(), mode="parallel")
