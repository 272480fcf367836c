"""
Chunk Fan-out Scheduler.

Drives one synthesis call per chunk with a bounded number of calls in
flight and hands the resulting AudioSegments back strictly in chunk order.

Modes:
    batched (default)
        Chunks are cut into consecutive batches of at most `concurrency`.
        Each batch runs concurrently and is awaited as a whole before the
        next one starts, so a platform ceiling on simultaneous outbound
        calls per window is never exceeded. Segments of a batch are yielded
        once the whole batch has finished.

    pool
        A worker per chunk behind an asyncio.Semaphore(concurrency). A slow
        chunk no longer holds back the start of later ones. Segments are
        yielded as soon as the contiguous prefix of chunks has completed.

Failure Semantics:
    The first failing chunk cancels every other in-flight call of the job
    and its exception propagates to the consumer. Segments yielded before
    the failure have already left the scheduler and are not retracted.

    Closing the segment iterator early (client went away) cancels the
    remaining calls as well.

Usage:
    scheduler = BatchScheduler(synthesize_chunk, concurrency=10, mode="batched")

    segments = await scheduler.run(chunks)          # ordered list

    async for segment in scheduler.iter_segments(chunks):
        await send(segment.data)                    # ordered, incremental
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, List, Sequence

from edge_tts_proxy.core.config import Defaults
from edge_tts_proxy.core.logging import debug, get_logger, verbose
from edge_tts_proxy.core.metrics import metrics
from edge_tts_proxy.tts.chunker import TextChunk
from edge_tts_proxy.tts.client import AudioSegment
from edge_tts_proxy.utils.timeit import timeit

_LOG = get_logger("edge-tts-proxy.scheduler")

SynthesizeFn = Callable[[TextChunk], Awaitable[AudioSegment]]


@dataclass
class SchedulerStats:
    """Counters for one scheduler instance."""
    batches: int = 0
    chunks_done: int = 0
    in_flight: int = 0
    max_in_flight: int = 0


class BatchScheduler:
    """
    Ordered, concurrency-bounded chunk synthesis.

    Args:
        synthesize: Coroutine function producing the segment for one chunk.
        concurrency: Maximum calls in flight (batch size in batched mode).
        mode: "batched" or "pool".

    Raises:
        ValueError: If concurrency is not positive or the mode is unknown.
    """

    def __init__(
        self,
        synthesize: SynthesizeFn,
        concurrency: int = Defaults.SCHEDULER_CONCURRENCY,
        mode: str = Defaults.SCHEDULER_MODE,
    ):
        if concurrency <= 0:
            raise ValueError(f"concurrency must be positive, got {concurrency}")
        if mode not in Defaults.SCHEDULER_MODES:
            raise ValueError(f"unknown scheduler mode {mode!r}")
        self._synthesize = synthesize
        self._concurrency = concurrency
        self._mode = mode
        self._stats = SchedulerStats()

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def stats(self) -> SchedulerStats:
        return self._stats

    def partition(self, chunks: Sequence[TextChunk]) -> List[List[TextChunk]]:
        """Consecutive batches of at most `concurrency` chunks, order kept."""
        size = self._concurrency
        return [list(chunks[i:i + size]) for i in range(0, len(chunks), size)]

    async def run(self, chunks: Sequence[TextChunk]) -> List[AudioSegment]:
        """Synthesize every chunk; segments come back in chunk order."""
        return [segment async for segment in self.iter_segments(chunks)]

    def iter_segments(self, chunks: Sequence[TextChunk]) -> AsyncIterator[AudioSegment]:
        """Yield segments in chunk order as they become releasable."""
        if self._mode == "pool":
            return self._iter_pool(chunks)
        return self._iter_batched(chunks)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _tracked(self, chunk: TextChunk) -> AudioSegment:
        stats = self._stats
        stats.in_flight += 1
        stats.max_in_flight = max(stats.max_in_flight, stats.in_flight)
        try:
            segment = await self._synthesize(chunk)
        finally:
            stats.in_flight -= 1
        stats.chunks_done += 1
        return segment

    async def _run_batch(self, batch: List[TextChunk]) -> List[AudioSegment]:
        tasks = [asyncio.create_task(self._tracked(c)) for c in batch]
        try:
            # gather keeps results aligned with the task list
            return list(await asyncio.gather(*tasks))
        finally:
            await _cancel_pending(tasks)

    async def _iter_batched(self, chunks: Sequence[TextChunk]) -> AsyncIterator[AudioSegment]:
        batches = self.partition(chunks)
        for n, batch in enumerate(batches, start=1):
            with timeit("batch") as t:
                segments = await self._run_batch(batch)
            self._stats.batches += 1
            metrics.record_batch(self._mode)
            verbose(_LOG, "batch_done", batch=n, batches=len(batches),
                    size=len(batch), seconds=round(t.seconds, 4))
            for segment in segments:
                yield segment

    async def _iter_pool(self, chunks: Sequence[TextChunk]) -> AsyncIterator[AudioSegment]:
        semaphore = asyncio.Semaphore(self._concurrency)
        failures: List[BaseException] = []

        async def worker(chunk: TextChunk) -> AudioSegment:
            async with semaphore:
                return await self._tracked(chunk)

        tasks = [asyncio.create_task(worker(c)) for c in chunks]

        def on_done(task: asyncio.Task) -> None:
            if task.cancelled() or task.exception() is None:
                return
            failures.append(task.exception())  # type: ignore[arg-type]
            for other in tasks:
                if not other.done():
                    other.cancel()

        for task in tasks:
            task.add_done_callback(on_done)

        try:
            for task in tasks:
                try:
                    segment = await task
                except asyncio.CancelledError:
                    # Cancelled because a sibling failed: surface that failure
                    if task.cancelled() and failures:
                        raise failures[0]
                    raise
                yield segment
            debug(_LOG, "pool_done", chunks=len(tasks), max_in_flight=self._stats.max_in_flight)
        finally:
            await _cancel_pending(tasks)


async def _cancel_pending(tasks: List[asyncio.Task]) -> None:
    """Cancel unfinished tasks and wait until they have settled."""
    pending = [t for t in tasks if not t.done()]
    for t in pending:
        t.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
