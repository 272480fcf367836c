"""
Tests for text chunking.

Tests cover:
- Size bound on every chunk
- Delimiter-preferring splits (ASCII and CJK)
- Fixed-width fallback when no delimiter exists
- Reconstruction of the input from the chunks
- Ordering and indices
- Empty and whitespace-only input
"""
from __future__ import annotations

import pytest

from edge_tts_proxy.tts.chunker import TextChunk, chunk_text, split_pieces


class TestSplitPieces:
    """Delimiter-terminated pieces."""

    def test_delimiters_stay_with_preceding_text(self):
        assert split_pieces("One. Two! Three?") == ["One.", " Two!", " Three?"]

    def test_pieces_tile_input(self):
        text = "...leading, then 中文。还有！end"
        assert "".join(split_pieces(text)) == text

    def test_no_delimiter_single_piece(self):
        assert split_pieces("abc def") == ["abc def"]


class TestChunkText:
    """Greedy chunking."""

    def test_short_text_single_chunk(self):
        chunks = chunk_text("Hello, world!", max_len=2000)
        assert chunks == [TextChunk(index=0, content="Hello, world!", start=0)]

    def test_greedy_accumulation(self):
        chunks = chunk_text("One. Two! Three?", max_len=10)
        assert [c.content for c in chunks] == ["One. Two!", " Three?"]

    def test_fixed_width_fallback(self):
        """3100 chars without delimiters: 2000 + 1100."""
        chunks = chunk_text("a" * 3100, max_len=2000)
        assert [len(c.content) for c in chunks] == [2000, 1100]
        assert [c.start for c in chunks] == [0, 2000]

    def test_every_chunk_within_bound(self):
        text = "This is a sentence. " * 300 + "x" * 5000 + "。尾巴！"
        for max_len in (7, 50, 2000):
            chunks = chunk_text(text, max_len=max_len)
            assert all(0 < len(c.content) <= max_len for c in chunks)

    def test_cjk_delimiters(self):
        text = "今天天气很好。我们去公园吧！你觉得呢？"
        chunks = chunk_text(text, max_len=8)
        assert [c.content for c in chunks] == ["今天天气很好。", "我们去公园吧！", "你觉得呢？"]

    def test_reconstruction(self):
        text = "First clause, second clause; third sentence. " * 40
        joined = "".join(c.content for c in chunk_text(text, max_len=100))
        # A trailing whitespace-only span may be dropped
        assert joined in (text, text.rstrip())

    def test_reconstruction_with_oversize_piece(self):
        text = "short. " + "b" * 250 + ". tail"
        chunks = chunk_text(text, max_len=100)
        assert "".join(c.content for c in chunks) == text
        assert all(len(c.content) <= 100 for c in chunks)

    def test_starts_match_offsets(self):
        text = "Alpha. Beta. Gamma. Delta."
        for c in chunk_text(text, max_len=12):
            assert text[c.start:c.start + len(c.content)] == c.content

    def test_indices_sequential(self):
        chunks = chunk_text("x. " * 500, max_len=40)
        assert [c.index for c in chunks] == list(range(len(chunks)))

    def test_empty_input(self):
        assert chunk_text("", max_len=10) == []

    def test_whitespace_only_dropped(self):
        assert chunk_text("   \n  ", max_len=10) == []

    def test_deterministic(self):
        text = "Repeatable, pure. Function! " * 20
        assert chunk_text(text, 30) == chunk_text(text, 30)

    @pytest.mark.parametrize("bad", [0, -5])
    def test_invalid_max_len(self, bad):
        with pytest.raises(ValueError):
            chunk_text("text", max_len=bad)
