# =============================================================================
# Document Repository — Relational Store Abstraction
# =============================================================================
#
# Every row the system reads or writes goes through this module: documents,
# chunks, embeddings and query records.
#
# ARCHITECTURE:
#   DocumentRepository (Protocol)
#   └── SqlDocumentRepository — SQLAlchemy 2.0, sync sessions
#       ├── PostgreSQL + pgvector in production
#       └── SQLite (StaticPool) in tests
#
# STATUS WRITES are compare-and-set:
#   UPDATE documents SET status = :target
#   WHERE id = :id AND status = :expected
# The expected value is whatever was read just before, after
# DocumentStatus.transition_to() has accepted the change. Zero rows updated
# means another run got there first, reported as IllegalTransitionError.
#
# Any SQLAlchemyError leaves this module as PersistenceError.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from typing import Protocol

from sqlalchemy import ColumnElement, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from kbqa.db.engine import session_scope
from kbqa.db.models import Chunk, Document, DocumentStatus, Embedding, QueryRecord
from kbqa.errors import IllegalTransitionError, NotFoundError, PersistenceError
from kbqa.services.similarity import CandidateChunk

logger = logging.getLogger(__name__)

ERROR_MESSAGE_MAX_LENGTH = 1000
DEFAULT_HISTORY_LIMIT = 20


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class DocumentRepository(Protocol):
    """Relational store used by the pipeline, the query engine and history."""

    def create_document(
        self,
        *,
        owner_id: str,
        filename: str,
        media_type: str,
        file_size: int,
        storage_path: str,
        employee_visible: bool = False,
        customer_visible: bool = False,
    ) -> Document:
        ...

    def get_document(self, document_id: int) -> Document:
        ...

    def transition_status(
        self,
        document_id: int,
        target: DocumentStatus,
        error_message: str | None = None,
    ) -> DocumentStatus:
        ...

    def add_chunks(
        self,
        document_id: int,
        contents: Sequence[str],
        vectors: Sequence[Sequence[float]] | None = None,
        model: str | None = None,
    ) -> list[int]:
        ...

    def list_chunks(self, document_id: int) -> list[Chunk]:
        ...

    def complete_with_embeddings(
        self,
        document_id: int,
        vectors_by_chunk: Sequence[tuple[int, Sequence[float]]],
        model: str,
    ) -> int:
        ...

    def completed_document_ids(self, criterion: ColumnElement[bool]) -> list[int]:
        ...

    def fetch_candidates(self, document_ids: Sequence[int]) -> list[CandidateChunk]:
        ...

    def add_query_record(
        self,
        requester_id: str | None,
        question: str,
        answer: str,
        source_document_ids: Sequence[int],
    ) -> QueryRecord:
        ...

    def list_query_records(
        self, requester_id: str, limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[QueryRecord]:
        ...

    def list_documents(self, owner_id: str) -> list[Document]:
        ...

    def delete_document(self, document_id: int, owner_id: str | None = None) -> str:
        ...


# ---------------------------------------------------------------------------
# Implementation: SQLAlchemy
# ---------------------------------------------------------------------------


class SqlDocumentRepository:
    """
    SQLAlchemy-backed repository.

    Each method runs in its own session_scope(), so every call is one
    transaction. ORM objects are returned detached (expire_on_commit=False);
    their column attributes stay readable, relationships do not.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Database operation failed: {exc}") from exc

    # --- Documents ---

    def create_document(
        self,
        *,
        owner_id: str,
        filename: str,
        media_type: str,
        file_size: int,
        storage_path: str,
        employee_visible: bool = False,
        customer_visible: bool = False,
    ) -> Document:
        with self._session() as session:
            document = Document(
                owner_id=owner_id,
                filename=filename,
                media_type=media_type,
                file_size=file_size,
                storage_path=storage_path,
                status=DocumentStatus.UPLOADED,
                owner_visible=True,
                employee_visible=employee_visible,
                customer_visible=customer_visible,
            )
            session.add(document)
            session.flush()
            session.refresh(document)
            logger.info(
                "Created document id=%d (owner=%s, file=%s)",
                document.id, owner_id, filename,
            )
            return document

    def get_document(self, document_id: int) -> Document:
        """
        Raises:
            NotFoundError: If no document has this id.
        """
        with self._session() as session:
            document = session.get(Document, document_id)
            if document is None:
                raise NotFoundError(f"Document {document_id} not found")
            return document

    def list_documents(self, owner_id: str) -> list[Document]:
        """An owner's documents, newest first."""
        with self._session() as session:
            return list(
                session.scalars(
                    select(Document)
                    .where(Document.owner_id == owner_id)
                    .order_by(Document.created_at.desc(), Document.id.desc())
                )
            )

    def transition_status(
        self,
        document_id: int,
        target: DocumentStatus,
        error_message: str | None = None,
    ) -> DocumentStatus:
        """
        Move a document to `target` if the state machine allows it.

        error_message is stored only for FAILED, truncated to 1000 chars.

        Raises:
            NotFoundError: If no document has this id.
            IllegalTransitionError: If the change is not allowed from the
                current status, or a concurrent writer changed the status
                between the read and the write.
        """
        with self._session() as session:
            current = self._compare_and_set(session, document_id, target, error_message)

        logger.info(
            "Document %d: %s -> %s", document_id, current.value, target.value,
        )
        return target

    @staticmethod
    def _compare_and_set(
        session: Session,
        document_id: int,
        target: DocumentStatus,
        error_message: str | None = None,
    ) -> DocumentStatus:
        """Apply one status write inside `session`; returns the prior status."""
        current = session.execute(
            select(Document.status).where(Document.id == document_id)
        ).scalar_one_or_none()
        if current is None:
            raise NotFoundError(f"Document {document_id} not found")

        current.transition_to(target)

        values: dict = {"status": target}
        if target is DocumentStatus.FAILED and error_message:
            values["error_message"] = error_message[:ERROR_MESSAGE_MAX_LENGTH]

        result = session.execute(
            update(Document)
            .where(Document.id == document_id, Document.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise IllegalTransitionError(current, target)
        return current

    def delete_document(self, document_id: int, owner_id: str | None = None) -> str:
        """
        Delete a document with its chunks and embeddings.

        When owner_id is given, a document owned by anyone else is treated
        as missing.

        Returns:
            The document's storage_path, so the caller can remove the bytes.
        """
        with self._session() as session:
            document = session.get(Document, document_id)
            if document is None or (
                owner_id is not None and document.owner_id != owner_id
            ):
                raise NotFoundError(f"Document {document_id} not found")
            storage_path = document.storage_path
            session.delete(document)

        logger.info("Deleted document %d", document_id)
        return storage_path

    # --- Chunks & Embeddings ---

    def add_chunks(
        self,
        document_id: int,
        contents: Sequence[str],
        vectors: Sequence[Sequence[float]] | None = None,
        model: str | None = None,
    ) -> list[int]:
        """
        Store a document's chunks (and, when given, their embeddings) in one
        transaction, indexed 0..n-1 in the given order.

        Either every row is written or none is.

        Returns:
            Created chunk ids, in index order.
        """
        if vectors is not None:
            if len(vectors) != len(contents):
                raise ValueError(
                    f"Got {len(vectors)} vectors for {len(contents)} chunks"
                )
            if not model:
                raise ValueError("model is required when storing vectors")

        with self._session() as session:
            chunks = [
                Chunk(document_id=document_id, chunk_index=index, content=content)
                for index, content in enumerate(contents)
            ]
            if vectors is not None:
                for chunk, vector in zip(chunks, vectors):
                    chunk.embedding = Embedding(
                        vector=list(vector),
                        model=model,
                        dimensions=len(vector),
                    )
            session.add_all(chunks)
            session.flush()
            chunk_ids = [chunk.id for chunk in chunks]

        logger.info(
            "Stored %d chunks for document %d (embedded=%s)",
            len(chunk_ids), document_id, vectors is not None,
        )
        return chunk_ids

    def list_chunks(self, document_id: int) -> list[Chunk]:
        with self._session() as session:
            return list(
                session.scalars(
                    select(Chunk)
                    .where(Chunk.document_id == document_id)
                    .order_by(Chunk.chunk_index)
                )
            )

    def complete_with_embeddings(
        self,
        document_id: int,
        vectors_by_chunk: Sequence[tuple[int, Sequence[float]]],
        model: str,
    ) -> int:
        """
        Move a PROCESSING document to COMPLETED and store one embedding per
        (chunk_id, vector) pair, both in one transaction.

        The status write runs first, so a concurrent run that already
        completed or failed the document makes this one roll back with
        IllegalTransitionError and no embeddings.
        """
        with self._session() as session:
            self._compare_and_set(session, document_id, DocumentStatus.COMPLETED)
            session.add_all(
                Embedding(
                    chunk_id=chunk_id,
                    vector=list(vector),
                    model=model,
                    dimensions=len(vector),
                )
                for chunk_id, vector in vectors_by_chunk
            )
        return len(vectors_by_chunk)

    # --- Retrieval ---

    def completed_document_ids(self, criterion: ColumnElement[bool]) -> list[int]:
        """Ids of COMPLETED documents matching `criterion`, ascending."""
        with self._session() as session:
            return list(
                session.scalars(
                    select(Document.id)
                    .where(Document.status == DocumentStatus.COMPLETED, criterion)
                    .order_by(Document.id)
                )
            )

    def fetch_candidates(self, document_ids: Sequence[int]) -> list[CandidateChunk]:
        """
        Every embedded chunk of the given documents that is still COMPLETED.

        Chunks without an embedding are never returned.
        """
        if not document_ids:
            return []

        stmt = (
            select(
                Chunk.id,
                Chunk.document_id,
                Chunk.chunk_index,
                Chunk.content,
                Document.filename,
                Embedding.vector,
            )
            .join(Embedding, Embedding.chunk_id == Chunk.id)
            .join(Document, Document.id == Chunk.document_id)
            .where(
                Chunk.document_id.in_(list(document_ids)),
                Document.status == DocumentStatus.COMPLETED,
            )
            .order_by(Chunk.id)
        )

        with self._session() as session:
            rows = session.execute(stmt).all()

        return [
            CandidateChunk(
                chunk_id=row.id,
                document_id=row.document_id,
                chunk_index=row.chunk_index,
                content=row.content,
                filename=row.filename,
                vector=row.vector,
            )
            for row in rows
        ]

    # --- Query history ---

    def add_query_record(
        self,
        requester_id: str | None,
        question: str,
        answer: str,
        source_document_ids: Sequence[int],
    ) -> QueryRecord:
        with self._session() as session:
            record = QueryRecord(
                requester_id=requester_id,
                question=question,
                answer=answer,
                source_document_ids=list(source_document_ids),
            )
            session.add(record)
            session.flush()
            session.refresh(record)
            return record

    def list_query_records(
        self, requester_id: str, limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[QueryRecord]:
        """A requester's records, newest first."""
        with self._session() as session:
            return list(
                session.scalars(
                    select(QueryRecord)
                    .where(QueryRecord.requester_id == requester_id)
                    .order_by(QueryRecord.created_at.desc(), QueryRecord.id.desc())
                    .limit(limit)
                )
            )
