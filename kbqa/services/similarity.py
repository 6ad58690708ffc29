# =============================================================================
# Similarity Search — Cosine Ranking over a Candidate Set
# =============================================================================
#
# There is no vector index. The repository fetches every embedded chunk of
# the visible, completed documents, and this module scores them in-process.
#
# Ranking is deterministic: descending score, ties broken by ascending
# chunk id.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from kbqa.errors import NoProcessedChunksError

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5


@dataclass(frozen=True)
class CandidateChunk:
    """A chunk eligible for ranking, with its stored vector."""

    chunk_id: int
    document_id: int
    chunk_index: int
    content: str
    filename: str
    vector: Sequence[float] | None


@dataclass(frozen=True)
class RankedChunk:
    """A candidate plus its similarity to the question (-1.0 to 1.0)."""

    chunk_id: int
    document_id: int
    chunk_index: int
    content: str
    filename: str
    score: float


def cosine_similarity(
    a: Sequence[float] | None,
    b: Sequence[float] | None,
) -> float:
    """
    Cosine of the angle between two vectors, clamped to [-1, 1].

    Returns 0.0 when either vector is missing or empty, when the lengths
    differ, when either norm is zero, or when a component is not finite.
    """
    if a is None or b is None:
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.size == 0 or va.shape != vb.shape:
        return 0.0
    if not (np.isfinite(va).all() and np.isfinite(vb).all()):
        return 0.0

    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0 or not np.isfinite(norm):
        return 0.0

    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


def rank(
    query_vector: Sequence[float],
    candidates: Sequence[CandidateChunk],
    k: int = DEFAULT_TOP_K,
) -> list[RankedChunk]:
    """
    Score every candidate against the query and return the best k.

    Raises:
        NoProcessedChunksError: If there are no candidates at all.
        ValueError: If k is not positive.
    """
    if k <= 0:
        raise ValueError(f"k must be positive, got {k}")
    if not candidates:
        raise NoProcessedChunksError()

    scored = [
        RankedChunk(
            chunk_id=c.chunk_id,
            document_id=c.document_id,
            chunk_index=c.chunk_index,
            content=c.content,
            filename=c.filename,
            score=cosine_similarity(query_vector, c.vector),
        )
        for c in candidates
    ]
    scored.sort(key=lambda r: (-r.score, r.chunk_id))

    logger.debug(
        "Ranked %d candidates, top score=%.4f", len(scored), scored[0].score,
    )
    return scored[:k]
