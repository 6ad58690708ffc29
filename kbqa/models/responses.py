# =============================================================================
# Response Models — Pydantic V2 Schemas
# =============================================================================
#
# Outputs of the KnowledgeBaseService invocation points, serialised with
# camelCase aliases:
#
#   process_document    → {"success": true, "chunksStored": n}
#   generate_embeddings → {"success": true, "embeddingsGenerated": n}
#   query               → {"answer": ..., "sources": [...]}
#   any failure         → {"error": message, "errorType": class name}
#
# Raw vectors never appear in a response.
# =============================================================================

from __future__ import annotations

from datetime import datetime

from pydantic import ConfigDict, Field

from kbqa.db.models import Document, DocumentStatus
from kbqa.models.requests import CamelModel


class ErrorResponse(CamelModel):
    error: str
    error_type: str = Field(description="Error class name, e.g. NoVisibleDocumentsError")

    @classmethod
    def from_exception(cls, exc: Exception) -> ErrorResponse:
        return cls(error=str(exc) or type(exc).__name__, error_type=type(exc).__name__)


class ProcessDocumentResponse(CamelModel):
    success: bool = True
    document_id: int
    chunks_stored: int


class EmbeddingsResponse(CamelModel):
    success: bool = True
    document_id: int
    embeddings_generated: int


class SourceReference(CamelModel):
    """One chunk that was placed in the prompt."""

    document_id: int
    filename: str
    snippet: str = Field(description="First characters of the chunk content")
    relevance_score: float = Field(description="Cosine similarity, -1.0 to 1.0")


class QueryResponse(CamelModel):
    answer: str
    sources: list[SourceReference] = Field(default_factory=list)


class DocumentResponse(CamelModel):
    """Document metadata and processing status."""

    id: int
    owner_id: str
    filename: str
    media_type: str
    file_size: int
    status: str
    error_message: str | None = None
    employee_visible: bool
    customer_visible: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_document(cls, document: Document) -> DocumentResponse:
        response = cls.model_validate(document, from_attributes=True)
        response.status = DocumentStatus(document.status).value
        return response


class QueryRecordResponse(CamelModel):
    id: int
    question: str
    answer: str
    source_document_ids: list[int]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
