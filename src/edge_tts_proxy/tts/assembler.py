"""
Audio Reassembly.

Takes the ordered AudioSegments coming out of the scheduler and produces
the response body in one of two modes.

Buffered:
    All segments are joined into one bytes object once the whole job has
    succeeded. Any failure raises before a single byte is returned.

Streaming:
    A producer task pulls segments from the scheduler and puts their bytes
    on an asyncio.Queue; the response body iterator drains the queue. The
    producer runs ahead of the network write by at most `max_pending`
    segments.

        scheduler --> producer task --> Queue --> stream() --> HTTP body

    On a chunk failure the producer enqueues the error and the body
    iterator raises it, aborting the response mid-stream. Bytes already
    written stay written. When the body iterator is closed or cancelled
    (client disconnect) the producer is cancelled, which cancels the
    scheduler's in-flight upstream calls.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, List

from edge_tts_proxy.core.logging import get_logger, verbose, warn
from edge_tts_proxy.tts.client import AudioSegment

_LOG = get_logger("edge-tts-proxy.assembler")

# Queue sentinel marking the end of a successful job
_END = object()


@dataclass(frozen=True)
class _Failure:
    error: BaseException


class StreamAssembler:
    """
    Turns ordered segments into a buffered payload or a live byte stream.

    One instance per job; `bytes_out` and `segments_out` count what has
    been handed to the caller so far.

    Args:
        max_pending: Queue bound between producer and body iterator.
    """

    def __init__(self, max_pending: int = 16):
        self._max_pending = max_pending
        self.bytes_out = 0
        self.segments_out = 0

    def _account(self, segment: AudioSegment) -> None:
        if segment.index < self.segments_out:
            raise RuntimeError(f"segment {segment.index} arrived after segment {self.segments_out - 1}")
        self.segments_out += 1
        self.bytes_out += len(segment.data)

    async def collect(self, segments: AsyncIterator[AudioSegment]) -> bytes:
        """Join every segment in order; raises on the first failure."""
        parts: List[bytes] = []
        async for segment in segments:
            self._account(segment)
            parts.append(segment.data)
        verbose(_LOG, "buffered_done", segments=self.segments_out, bytes=self.bytes_out)
        return b"".join(parts)

    async def stream(self, segments: AsyncIterator[AudioSegment]) -> AsyncIterator[bytes]:
        """
        Yield segment bytes as they become available.

        Raises:
            Whatever the scheduler raised, after the bytes that preceded it.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_pending)

        async def produce() -> None:
            try:
                async for segment in segments:
                    await queue.put(segment)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await queue.put(_Failure(e))
                return
            finally:
                aclose = getattr(segments, "aclose", None)
                if aclose is not None:
                    await aclose()
            await queue.put(_END)

        producer = asyncio.create_task(produce())
        completed = False
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    completed = True
                    break
                if isinstance(item, _Failure):
                    warn(_LOG, "stream_aborted", segments=self.segments_out, bytes=self.bytes_out,
                         error=str(item.error), error_type=type(item.error).__name__)
                    raise item.error
                self._account(item)
                yield item.data
        finally:
            cancelled = not producer.done()
            if cancelled:
                producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)
            if completed:
                verbose(_LOG, "stream_done", segments=self.segments_out, bytes=self.bytes_out)
            elif cancelled:
                warn(_LOG, "stream_cancelled", segments=self.segments_out, bytes=self.bytes_out)
