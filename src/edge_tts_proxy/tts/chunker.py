"""
Text Chunking for Upstream Synthesis.

The upstream engine accepts a bounded amount of text per call, so cleaned
text is split into ordered chunks of at most `max_len` characters. Splits
prefer sentence and clause boundaries so that prosody is not cut mid-phrase.

Strategy:
    1. Cut the text into pieces that end in a delimiter (ASCII or CJK
       sentence/clause punctuation, or a line break). Delimiters stay with
       the piece before them.
    2. Greedily append pieces to a buffer; flush the buffer as a chunk when
       the next piece would push it past `max_len`.
    3. A piece longer than `max_len` on its own (no delimiter for a long
       stretch) is sliced at fixed `max_len` boundaries.
    4. Whitespace-only chunks are dropped.

Chunks are raw spans of the input: joining every chunk's content gives the
input back, minus only the dropped whitespace-only spans.

Example:
    >>> [c.content for c in chunk_text("One. Two! Three?", max_len=10)]
    ['One. Two!', ' Three?']
    >>> [len(c.content) for c in chunk_text("a" * 3100, max_len=2000)]
    [2000, 1100]
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

from edge_tts_proxy.core.logging import get_logger, verbose
from edge_tts_proxy.utils.timeit import timeit

_LOG = get_logger("edge-tts-proxy.chunker")

# Sentence and clause delimiters, ASCII and full-width CJK
_DELIMITERS = ".!?;:,\n。！？；：，、…"
_DELIM_CLASS = re.escape(_DELIMITERS)

# A run of non-delimiters with its trailing delimiters, or a bare delimiter run
# (text that opens with punctuation). Together the matches tile the input.
_PIECE_RE = re.compile(rf"[^{_DELIM_CLASS}]+[{_DELIM_CLASS}]*|[{_DELIM_CLASS}]+")


@dataclass(frozen=True)
class TextChunk:
    """
    One unit of text for a single synthesis call.

    Attributes:
        index: Position in the job, 0-based. Output audio follows this order.
        content: The text span, untrimmed.
        start: Offset of the span in the chunked text.
    """
    index: int
    content: str
    start: int = 0


def split_pieces(text: str) -> List[str]:
    """Delimiter-terminated pieces; their concatenation is `text`."""
    return [m.group(0) for m in _PIECE_RE.finditer(text)]


def chunk_text(text: str, max_len: int = 2000) -> List[TextChunk]:
    """
    Split text into ordered, size-bounded chunks.

    Pure function of its input, so a failed job can simply re-chunk.

    Args:
        text: Normalized text.
        max_len: Maximum characters per chunk.

    Returns:
        Chunks in input order, indexed from 0. Empty for empty or
        whitespace-only text.

    Raises:
        ValueError: If max_len is not positive.
    """
    if max_len <= 0:
        raise ValueError(f"max_len must be positive, got {max_len}")

    spans: List[tuple[int, str]] = []

    with timeit("chunk") as t:
        offset = 0
        buf_start = 0
        buf = ""

        def flush() -> None:
            nonlocal buf
            if buf:
                spans.append((buf_start, buf))
            buf = ""

        for piece in split_pieces(text):
            if buf and len(buf) + len(piece) > max_len:
                flush()

            if not buf:
                buf_start = offset

            if len(piece) > max_len:
                # No usable delimiter: hard slices, remainder stays buffered
                pos = 0
                while len(piece) - pos > max_len:
                    spans.append((offset + pos, piece[pos:pos + max_len]))
                    pos += max_len
                buf_start = offset + pos
                buf = piece[pos:]
            else:
                buf += piece

            offset += len(piece)

        flush()

    chunks = [
        TextChunk(index=i, content=content, start=start)
        for i, (start, content) in enumerate((s, c) for s, c in spans if c.strip())
    ]

    verbose(
        _LOG, "chunked",
        chunks=len(chunks),
        max_len=max_len,
        chars=len(text),
        seconds=round(t.seconds, 4),
    )
    return chunks
