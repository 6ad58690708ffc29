# =============================================================================
# Unit Tests — Chunker Service
# =============================================================================
#
# Tests the sentence/row chunking logic without external dependencies.
# No API keys, databases, or network calls needed.
# =============================================================================

import pytest

from kbqa.services.chunker import chunk_text
from kbqa.services.parser import sheet_marker


def _prose(sentences: int) -> str:
    """Roughly 95 characters and 15 words per sentence."""
    return " ".join(
        f"Sentence {i:02d} covers revenue growth, operating margins and the "
        f"outlook for the next fiscal year."
        for i in range(sentences)
    )


class TestChunkText:
    """Tests for chunk_text()."""

    def test_empty_text_returns_no_chunks(self):
        assert chunk_text("") == []
        assert chunk_text("   \n\t ") == []

    def test_short_text_is_one_trimmed_chunk(self):
        assert chunk_text("  Short. Another one!  ") == ["Short. Another one!"]

    def test_text_without_boundaries_is_one_chunk(self):
        assert chunk_text("just some words with no punctuation") == [
            "just some words with no punctuation"
        ]

    def test_1200_char_document_gives_two_overlapping_chunks(self):
        text = _prose(12)
        assert 1000 < len(text) < 1300

        chunks = chunk_text(text, max_size=1000, overlap=200)

        assert len(chunks) == 2
        tail = " ".join(chunks[0].split()[-40:])
        assert chunks[1].startswith(tail)
        assert chunks[1].endswith("Sentence 11 covers revenue growth, operating "
                                  "margins and the outlook for the next fiscal year.")

    def test_overlap_word_count_is_overlap_over_five(self):
        chunks = chunk_text(_prose(12), max_size=1000, overlap=50)
        tail = chunks[0].split()[-10:]
        assert chunks[1].split()[:10] == tail
        assert chunks[1].split()[10] == "Sentence"

    def test_zero_overlap_preserves_every_word_once(self):
        text = _prose(30)
        chunks = chunk_text(text, max_size=300, overlap=0)
        assert len(chunks) > 1
        assert " ".join(chunks).split() == text.split()

    @pytest.mark.parametrize("max_size", [50, 120, 300, 1000])
    @pytest.mark.parametrize("overlap", [0, 20, 45, 200])
    def test_no_chunk_exceeds_max_size(self, max_size, overlap):
        chunks = chunk_text(_prose(25), max_size=max_size, overlap=overlap)
        assert chunks
        assert all(0 < len(c) <= max_size for c in chunks)
        assert all(c == c.strip() for c in chunks)

    def test_chunking_is_deterministic(self):
        text = _prose(20)
        assert chunk_text(text, 400, 100) == chunk_text(text, 400, 100)

    def test_oversized_segment_without_spaces_is_cut_at_max_size(self):
        chunks = chunk_text("a" * 2500, max_size=1000, overlap=200)
        assert [len(c) for c in chunks] == [1000, 1000, 500]

    def test_oversized_segment_breaks_at_last_space(self):
        words = " ".join(["lorem"] * 60)  # 359 chars, no sentence boundary
        chunks = chunk_text(words, max_size=100, overlap=0)
        assert all(len(c) <= 100 for c in chunks)
        assert all(set(c.split()) == {"lorem"} for c in chunks)
        assert " ".join(chunks).split() == words.split()

    def test_line_breaks_are_boundaries(self):
        text = "first line without a stop\nsecond line without a stop\nthird"
        chunks = chunk_text(text, max_size=30, overlap=0)
        assert chunks == [
            "first line without a stop",
            "second line without a stop",
            "third",
        ]

    def test_sheet_text_splits_on_rows(self):
        rows = [f"item-{i},{i * 10},in stock" for i in range(20)]
        text = sheet_marker("Inventory") + "\n" + "\n".join(rows)

        chunks = chunk_text(text, max_size=80, overlap=0)

        assert len(chunks) > 1
        assert chunks[0].startswith("=== Sheet: Inventory ===")
        # No row is ever split across chunks
        for chunk in chunks:
            for line in chunk.splitlines():
                assert line in rows or line == sheet_marker("Inventory")

    def test_invalid_parameters_raise(self):
        with pytest.raises(ValueError):
            chunk_text("text", max_size=0)
        with pytest.raises(ValueError):
            chunk_text("text", overlap=-1)
