# =============================================================================
# Answer Synthesizer — Grounded Answer Generation
# =============================================================================
#
# Takes the ranked chunks for a question, fits as many as the context token
# budget allows, and makes one non-streaming call to the generation provider.
#
# CONTEXT BUDGET (tiktoken, cl100k_base):
#   Chunks are taken in rank order while the running token count of the
#   context block (chunk bodies plus the delimiters between them) stays
#   within max_context_tokens. The system prompt and the question are not
#   counted against it. A top chunk that is over budget on its own is
#   truncated to the budget, so the context is never empty. Only the chunks
#   placed in the context are reported back as `used`; sources and history
#   are built from those.
#
# The provider's text is returned verbatim.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace

import tiktoken

from kbqa.errors import NoProcessedChunksError
from kbqa.services.llm import LLMProvider
from kbqa.services.similarity import RankedChunk

logger = logging.getLogger(__name__)

FALLBACK_ANSWER = "I don't have enough information to answer that."

CONTEXT_DELIMITER = "\n\n---\n\n"

DEFAULT_MAX_CONTEXT_TOKENS = 6000

SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions about the user's "
    "documents.\n\n"
    "Rules:\n"
    "- Answer ONLY using the provided context\n"
    "- Do not use outside knowledge or make assumptions beyond the context\n"
    "- If the answer is not in the context, reply with exactly: "
    f'"{FALLBACK_ANSWER}"\n'
    "- Keep your answer concise and directly relevant"
)


@dataclass
class Synthesis:
    """Generated answer plus the chunks that were actually in the prompt."""

    answer: str
    used: list[RankedChunk]
    model: str
    input_tokens: int
    output_tokens: int


# ---------------------------------------------------------------------------
# Token Counting
# ---------------------------------------------------------------------------

_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    """Lazily initialize and cache the tiktoken encoder."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


def count_tokens(text: str) -> int:
    return len(_get_encoder().encode(text))


def select_context(
    ranked: Sequence[RankedChunk],
    max_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS,
) -> list[RankedChunk]:
    """
    Take chunks in rank order until the next one, plus the delimiter before
    it, would push the context block past max_tokens.

    The first chunk is always included; if it alone is over budget its
    content is truncated to max_tokens tokens.
    """
    if not ranked:
        return []

    encoder = _get_encoder()
    delimiter_tokens = len(encoder.encode(CONTEXT_DELIMITER))
    used: list[RankedChunk] = []
    total = 0

    for position, chunk in enumerate(ranked):
        tokens = encoder.encode(chunk.content)
        if position == 0 and len(tokens) > max_tokens:
            logger.info(
                "Top chunk %d has %d tokens, truncating to %d",
                chunk.chunk_id, len(tokens), max_tokens,
            )
            used.append(replace(chunk, content=encoder.decode(tokens[:max_tokens])))
            break
        cost = len(tokens) + (delimiter_tokens if used else 0)
        if total + cost > max_tokens:
            break
        used.append(chunk)
        total += cost

    return used


def build_prompt(question: str, context_chunks: Sequence[RankedChunk]) -> str:
    context = CONTEXT_DELIMITER.join(chunk.content for chunk in context_chunks)
    return f"Context:\n{context}\n\nQuestion: {question}\n\nAnswer:"


# ---------------------------------------------------------------------------
# Synthesizer
# ---------------------------------------------------------------------------


class AnswerSynthesizer:
    """
    Turns a question plus ranked chunks into a grounded answer.

    Args:
        llm: Any LLMProvider (Anthropic, OpenAI-compatible, or a test fake).
        max_context_tokens: Budget for the joined context block.
    """

    def __init__(
        self,
        llm: LLMProvider,
        max_context_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS,
    ) -> None:
        self._llm = llm
        self._max_context_tokens = max_context_tokens

    async def synthesize(
        self,
        question: str,
        ranked: Sequence[RankedChunk],
    ) -> Synthesis:
        """
        Raises:
            NoProcessedChunksError: If `ranked` is empty.
            ExternalServiceError: If the provider call fails.
        """
        used = select_context(ranked, self._max_context_tokens)
        if not used:
            raise NoProcessedChunksError()

        logger.info(
            "Generating answer from %d of %d ranked chunks",
            len(used), len(ranked),
        )

        response = await self._llm.complete(
            messages=[{"role": "user", "content": build_prompt(question, used)}],
            system=SYSTEM_PROMPT,
        )

        logger.info(
            "Answer generated: model=%s, tokens=%d+%d, %d chars",
            response.model, response.input_tokens, response.output_tokens,
            len(response.content),
        )

        return Synthesis(
            answer=response.content,
            used=used,
            model=response.model,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
        )
