# =============================================================================
# Query Engine — LangGraph Retrieval & Answer Graph
# =============================================================================
#
# Wires the retrieval/answer steps into a LangGraph StateGraph.
#
# GRAPH TOPOLOGY:
#   START ──▶ scope ──▶ embed ──▶ retrieve ──▶ synthesize ──▶ record ──▶ END
#
#   scope      — Access Filter: visible completed document ids
#   embed      — one embedding call for the question
#   retrieve   — fetch candidates for the scope, cosine-rank, keep top-k
#   synthesize — context budget + one generation call
#   record     — append a QueryRecord with the used chunks' documents
#
# The scope is resolved before the question is embedded, so a requester
# with nothing visible costs no provider call.
#
# Repository and embedding calls are blocking; nodes run them through
# asyncio.to_thread(). Errors raised in a node abort the run and propagate
# out of ainvoke() unchanged; nothing is recorded for a failed question.
#
# Unlike a module-level graph, each QueryEngine compiles its own graph so
# nodes close over the injected collaborators.
# =============================================================================

from __future__ import annotations

import asyncio
import logging

from langgraph.graph import END, START, StateGraph
from langgraph.graph.state import CompiledStateGraph
from typing_extensions import TypedDict

from kbqa.errors import ValidationError
from kbqa.services.access import Actor, SearchMode, resolve_mode, visible_document_ids
from kbqa.services.embedder import TextEmbedder
from kbqa.services.history import QueryHistoryLogger
from kbqa.services.repository import DocumentRepository
from kbqa.services.similarity import DEFAULT_TOP_K, RankedChunk, rank
from kbqa.services.synthesizer import AnswerSynthesizer, Synthesis

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Query State Schema
# ---------------------------------------------------------------------------


class QueryState(TypedDict, total=False):
    """
    State that flows through the query graph.

    total=False so nodes only return the keys they update.
    """

    # --- Input (set by caller) ---
    question: str
    actor: Actor
    mode: SearchMode

    # --- Intermediate (set by nodes) ---
    document_ids: list[int]
    query_vector: list[float]
    ranked: list[RankedChunk]
    synthesis: Synthesis

    # --- Output ---
    answer: str
    used: list[RankedChunk]
    record_id: int


class QueryEngine:
    """
    Answers questions from the documents an actor is allowed to see.

    Args:
        repo: Relational store (scope, candidates, history).
        embedder: Embeds the question.
        synthesizer: Generates the grounded answer.
        top_k: Number of ranked chunks handed to the synthesizer.
    """

    def __init__(
        self,
        repo: DocumentRepository,
        embedder: TextEmbedder,
        synthesizer: AnswerSynthesizer,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self._repo = repo
        self._embedder = embedder
        self._synthesizer = synthesizer
        self._history = QueryHistoryLogger(repo)
        self._top_k = top_k
        self._graph = self._build_graph()

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def ask(
        self,
        question: str,
        actor: Actor,
        customer_mode: bool = False,
    ) -> QueryState:
        """
        Run the graph for one question and return the final state.

        Raises:
            ValidationError: Blank question, or a missing requester id in
                owner/employee mode.
            NoVisibleDocumentsError: Nothing is visible to the actor.
            NoProcessedChunksError: Visible documents have no embedded chunks.
            ExternalServiceError: Embedding or generation failed.
            PersistenceError: A store read or write failed.
        """
        if not question or not question.strip():
            raise ValidationError("Question is required")

        mode = resolve_mode(actor, customer_mode)
        logger.info(
            "Invoking query graph: question='%s', actor=%s, mode=%s",
            question[:80], actor.actor_id, mode.value,
        )

        result = await self._graph.ainvoke(
            {"question": question, "actor": actor, "mode": mode}
        )

        logger.info(
            "Query graph complete: %d sources, record=%s",
            len(result.get("used", [])), result.get("record_id"),
        )
        return result

    # -----------------------------------------------------------------------
    # Node Functions
    # -----------------------------------------------------------------------
    # Each node receives the full state and returns a partial update dict.
    # -----------------------------------------------------------------------

    async def _scope_node(self, state: QueryState) -> dict:
        document_ids = await asyncio.to_thread(
            visible_document_ids, self._repo, state["actor"], state["mode"],
        )
        return {"document_ids": document_ids}

    async def _embed_node(self, state: QueryState) -> dict:
        vector = await asyncio.to_thread(self._embedder.embed, state["question"])
        return {"query_vector": vector}

    async def _retrieve_node(self, state: QueryState) -> dict:
        candidates = await asyncio.to_thread(
            self._repo.fetch_candidates, state["document_ids"],
        )
        ranked = rank(state["query_vector"], candidates, k=self._top_k)
        logger.info(
            "Retrieved %d candidates from %d documents, kept %d",
            len(candidates), len(state["document_ids"]), len(ranked),
        )
        return {"ranked": ranked}

    async def _synthesize_node(self, state: QueryState) -> dict:
        synthesis = await self._synthesizer.synthesize(state["question"], state["ranked"])
        return {
            "synthesis": synthesis,
            "answer": synthesis.answer,
            "used": synthesis.used,
        }

    async def _record_node(self, state: QueryState) -> dict:
        record = await asyncio.to_thread(
            self._history.record,
            state["actor"].actor_id,
            state["question"],
            state["answer"],
            state["used"],
        )
        return {"record_id": record.id}

    # -----------------------------------------------------------------------
    # Graph Assembly
    # -----------------------------------------------------------------------

    def _build_graph(self) -> CompiledStateGraph:
        builder = StateGraph(QueryState)
        builder.add_node("scope", self._scope_node)
        builder.add_node("embed", self._embed_node)
        builder.add_node("retrieve", self._retrieve_node)
        builder.add_node("synthesize", self._synthesize_node)
        builder.add_node("record", self._record_node)

        builder.add_edge(START, "scope")
        builder.add_edge("scope", "embed")
        builder.add_edge("embed", "retrieve")
        builder.add_edge("retrieve", "synthesize")
        builder.add_edge("synthesize", "record")
        builder.add_edge("record", END)

        return builder.compile()
