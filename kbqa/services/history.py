# =============================================================================
# Query History Logger
# =============================================================================
#
# Append-only record of answered questions. Each record keeps the distinct
# ids of the documents whose chunks reached the prompt, in the order they
# first appeared in the ranking.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence

from kbqa.db.models import QueryRecord
from kbqa.services.repository import DEFAULT_HISTORY_LIMIT, DocumentRepository
from kbqa.services.similarity import RankedChunk

logger = logging.getLogger(__name__)


class QueryHistoryLogger:
    def __init__(self, repo: DocumentRepository) -> None:
        self._repo = repo

    def record(
        self,
        requester_id: str | None,
        question: str,
        answer: str,
        chunks: Sequence[RankedChunk],
    ) -> QueryRecord:
        source_ids = list(dict.fromkeys(chunk.document_id for chunk in chunks))
        record = self._repo.add_query_record(requester_id, question, answer, source_ids)
        logger.info(
            "Recorded query %d (requester=%s, sources=%s)",
            record.id, requester_id, source_ids,
        )
        return record

    def recent(
        self, requester_id: str, limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[QueryRecord]:
        """Newest first."""
        return self._repo.list_query_records(requester_id, limit)
