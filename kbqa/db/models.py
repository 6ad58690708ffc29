# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌──────────────────┐      ┌──────────────────────┐      ┌──────────────────┐
# │  documents       │      │  chunks              │      │  embeddings      │
# ├──────────────────┤      ├──────────────────────┤      ├──────────────────┤
# │ id (PK)          │─1:N─▶│ id (PK)              │─1:1─▶│ id (PK)          │
# │ owner_id         │      │ document_id (FK)     │      │ chunk_id (FK, U) │
# │ filename         │      │ chunk_index          │      │ vector           │
# │ media_type       │      │ content              │      │ model            │
# │ file_size        │      │ created_at           │      │ dimensions       │
# │ storage_path     │      └──────────────────────┘      │ created_at       │
# │ status           │                                    └──────────────────┘
# │ error_message    │
# │ *_visible (x3)   │      ┌──────────────────────┐
# │ created_at       │      │  query_records       │
# │ updated_at       │      ├──────────────────────┤
# └──────────────────┘      │ id, requester_id,    │
#                           │ question, answer,    │
#                           │ source_document_ids  │
#                           └──────────────────────┘
#
# Deleting a document cascades to its chunks and their embeddings, both in
# the ORM (cascade="all, delete-orphan") and in the DDL (ON DELETE CASCADE).
#
# The vector column is pgvector's `vector` on PostgreSQL and JSON elsewhere
# (SQLite in tests). No dimension is pinned in the DDL: the embedder checks
# every vector against Settings.embedding_dimensions before it is stored.
# =============================================================================

from __future__ import annotations

import enum
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from kbqa.errors import IllegalTransitionError

VectorType = Vector().with_variant(JSON(), "sqlite")
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class DocumentStatus(str, enum.Enum):
    """
    Ingestion pipeline state for a document.

    State machine:
        UPLOADED → PROCESSING → COMPLETED
                              → FAILED

    COMPLETED and FAILED are terminal. There is no way back to PROCESSING;
    retrying means uploading again.
    """

    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.COMPLETED, DocumentStatus.FAILED)

    def transition_to(self, target: DocumentStatus) -> DocumentStatus:
        """
        Validate a status change and return the new status.

        This is the only place the allowed transitions are defined. The
        repository calls it before every status write.

        Raises:
            IllegalTransitionError: If `target` is not reachable from self.
        """
        if target not in _TRANSITIONS[self]:
            raise IllegalTransitionError(self, target)
        return target


_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.UPLOADED: frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.PROCESSING: frozenset(
        {DocumentStatus.COMPLETED, DocumentStatus.FAILED}
    ),
    DocumentStatus.COMPLETED: frozenset(),
    DocumentStatus.FAILED: frozenset(),
}


class Document(Base):
    """
    An uploaded document and its ingestion status.

    Created by the upload step in UPLOADED status; afterwards only the
    pipeline orchestrator changes it.
    """

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity of the uploading user, as issued by the external identity service
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)

    filename: Mapped[str] = mapped_column(String(500), nullable=False)

    # Declared media type, e.g. "application/pdf"
    media_type: Mapped[str] = mapped_column(String(255), nullable=False)

    file_size: Mapped[int] = mapped_column(Integer, nullable=False)

    # Opaque object-store key for the raw bytes
    storage_path: Mapped[str] = mapped_column(String(1000), nullable=False)

    status: Mapped[DocumentStatus] = mapped_column(
        Enum(
            DocumentStatus,
            name="document_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=DocumentStatus.UPLOADED,
    )

    # Set only when status is FAILED
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Visibility flags. The owner can always see their own documents.
    owner_visible: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True,
    )
    employee_visible: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    customer_visible: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    chunks: Mapped[list[Chunk]] = relationship(
        "Chunk",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Chunk.chunk_index",
    )

    def __repr__(self) -> str:
        return (
            f"<Document(id={self.id}, filename='{self.filename}', "
            f"status={self.status})>"
        )


class Chunk(Base):
    """
    A bounded slice of a document's extracted text; the unit of retrieval.

    Indices are contiguous 0..n-1 per document, in reading order.
    """

    __tablename__ = "chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_chunk_document_index"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    document_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )

    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)

    content: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    document: Mapped[Document] = relationship("Document", back_populates="chunks")

    embedding: Mapped[Embedding | None] = relationship(
        "Embedding",
        back_populates="chunk",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )

    def __repr__(self) -> str:
        return (
            f"<Chunk(id={self.id}, doc_id={self.document_id}, "
            f"index={self.chunk_index})>"
        )


class Embedding(Base):
    """
    The vector for exactly one chunk.

    Only written once every chunk of the document has been embedded, in the
    same transaction, so a chunk either has its embedding or the document
    never reached COMPLETED.
    """

    __tablename__ = "embeddings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    chunk_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("chunks.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    vector: Mapped[list[float]] = mapped_column(VectorType, nullable=False)

    # Embedding model name and vector length at write time
    model: Mapped[str] = mapped_column(String(200), nullable=False)
    dimensions: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    chunk: Mapped[Chunk] = relationship("Chunk", back_populates="embedding")

    def __repr__(self) -> str:
        return f"<Embedding(id={self.id}, chunk_id={self.chunk_id}, dims={self.dimensions})>"


class QueryRecord(Base):
    """
    Append-only history of answered questions and their source documents.
    """

    __tablename__ = "query_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Null for anonymous customer-mode questions
    requester_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    question: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str] = mapped_column(Text, nullable=False)

    # Distinct document ids in first-contributed order
    source_document_ids: Mapped[list[int]] = mapped_column(
        JsonType, nullable=False, default=list,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<QueryRecord(id={self.id}, requester='{self.requester_id}')>"


# =============================================================================
# Indexes
# =============================================================================
# No vector index: similarity is computed over a per-query candidate set.
# =============================================================================

document_owner_status_idx = Index(
    "idx_document_owner_status",
    Document.owner_id,
    Document.status,
)

chunk_document_idx = Index(
    "idx_chunk_document_id",
    Chunk.document_id,
)

query_record_requester_idx = Index(
    "idx_query_record_requester_created",
    QueryRecord.requester_id,
    QueryRecord.created_at,
)
