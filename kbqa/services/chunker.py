# =============================================================================
# Text Chunker — Sentence/Row Segmentation with Word Overlap
# =============================================================================
#
# Splits extracted text into overlapping, size-bounded chunks. Pure and
# deterministic: the same text and parameters always yield the same list.
#
# ALGORITHM:
# 1. Segment. Spreadsheet text (it carries sheet-boundary markers) is split
#    into one segment per non-empty line. Anything else is split after runs
#    of sentence-ending punctuation (. ! ?) and after runs of line breaks;
#    text with no boundary is a single segment.
# 2. Accumulate segments greedily. When the next segment would push the
#    current chunk past max_size, close the chunk and seed the next one with
#    the last floor(overlap / 5) words of the closed chunk, then the segment.
# 3. A segment longer than max_size is hard-split on its own, preferring the
#    last newline or space before each cut point.
#
# Sizes are in characters. Every returned chunk is non-empty after trimming
# and at most max_size characters long.
#
# Pipeline position: Step 2 of ingestion (parse → chunk → embed → store).
# =============================================================================

from __future__ import annotations

import logging
import re

from kbqa.services.parser import has_sheet_markers

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 1000
DEFAULT_OVERLAP = 200

# Characters of overlap budget per carried-over word
_CHARS_PER_OVERLAP_WORD = 5

# A hard-split boundary closer to the window start than this fraction of
# max_size is ignored and the cut is made exactly at max_size.
_MIN_BREAK_FRACTION = 0.5

_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])(?![.!?])|(?<=\n)(?!\n)")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def chunk_text(
    text: str,
    max_size: int = DEFAULT_MAX_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> list[str]:
    """
    Split text into ordered, overlapping chunks of at most max_size characters.

    Args:
        text: Extracted document text.
        max_size: Maximum characters per chunk (default 1000).
        overlap: Overlap budget in characters (default 200); the next chunk
            starts with the last overlap // 5 words of the previous one.

    Returns:
        List of non-empty chunk strings in reading order.

    Raises:
        ValueError: If max_size <= 0 or overlap < 0.
    """
    if max_size <= 0:
        raise ValueError(f"max_size must be positive, got {max_size}")
    if overlap < 0:
        raise ValueError(f"overlap must be non-negative, got {overlap}")

    if not text or not text.strip():
        return []

    segments = _segment(text)
    overlap_words = overlap // _CHARS_PER_OVERLAP_WORD

    chunks: list[str] = []
    current = ""

    for segment in segments:
        if len(segment.strip()) > max_size:
            _close(chunks, current)
            current = ""
            chunks.extend(_hard_split(segment, max_size))
            continue

        if len(current) + len(segment) > max_size and current.strip():
            _close(chunks, current)
            current = _seed(current, segment, overlap_words, max_size)
        else:
            current += segment

    _close(chunks, current)

    logger.debug(
        "Chunked %d characters into %d chunks (max_size=%d, overlap=%d)",
        len(text), len(chunks), max_size, overlap,
    )
    return chunks


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _segment(text: str) -> list[str]:
    if has_sheet_markers(text):
        return [line + "\n" for line in text.splitlines() if line.strip()]

    segments = [s for s in _SENTENCE_BOUNDARY_RE.split(text) if s]
    return segments or [text]


def _close(chunks: list[str], current: str) -> None:
    closed = current.strip()
    if closed:
        chunks.append(closed)


def _seed(previous: str, segment: str, overlap_words: int, max_size: int) -> str:
    """
    Start a new chunk with the tail words of the previous one plus segment.

    Leading tail words are dropped until the seeded chunk fits in max_size.
    """
    tail = previous.split()[-overlap_words:] if overlap_words > 0 else []
    pending = segment.lstrip()
    while tail:
        seeded = " ".join(tail) + " " + pending
        if len(seeded.strip()) <= max_size:
            return seeded
        tail = tail[1:]
    return pending


def _hard_split(segment: str, max_size: int) -> list[str]:
    """
    Cut an oversized segment into pieces of at most max_size characters,
    breaking at the last newline or space inside each window when one exists
    past the first half of the window.
    """
    pieces: list[str] = []
    rest = segment.strip()
    min_break = int(max_size * _MIN_BREAK_FRACTION)

    while len(rest) > max_size:
        window = rest[: max_size + 1]
        cut = max(window.rfind("\n"), window.rfind(" "))
        if cut < min_break or cut == 0:
            piece, rest = rest[:max_size], rest[max_size:]
        else:
            piece, rest = rest[:cut], rest[cut + 1:]
        piece = piece.strip()
        if piece:
            pieces.append(piece)
        rest = rest.lstrip()

    if rest.strip():
        pieces.append(rest.strip())
    return pieces
