# =============================================================================
# Pipeline Orchestrator — Document Ingestion
# =============================================================================
#
# Runs the ingestion pipeline for one uploaded document and tracks its
# status in the documents table.
#
# INGESTION PIPELINE (process_document):
#   1. Claim the document: UPLOADED → PROCESSING (compare-and-set)
#   2. Parse the payload → plain text
#   3. Chunk the text → ordered, overlapping chunks
#   4. Embed every chunk through the worker pool
#   5. Store all chunks + embeddings in one transaction
#   6. PROCESSING → COMPLETED (or FAILED on error)
#
# SPLIT-STAGE MODE (embed=False):
#   Steps 4 and 6 are skipped; chunks are stored on their own and the
#   document stays PROCESSING until generate_embeddings() runs.
#
# FAILURE HANDLING:
#   A failed claim is returned as-is and never written to the document; the
#   run that lost the claim must not disturb the run that won it. Any error
#   after the claim is logged once, recorded on the document (FAILED, message
#   truncated to 1000 chars) and returned. Nothing is retried here; the
#   embedder has its own per-text retry budget.
# =============================================================================

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import PurePath

from kbqa.config import Settings
from kbqa.db.models import Document, DocumentStatus
from kbqa.errors import (
    ChunkingFailedError,
    IllegalTransitionError,
    KbqaError,
    NotFoundError,
    UnsupportedFormatError,
    ValidationError,
)
from kbqa.services.blobstore import BlobStore
from kbqa.services.chunker import chunk_text
from kbqa.services.embedder import TextEmbedder
from kbqa.services.parser import SUPPORTED_MEDIA_TYPES, normalise_media_type, parse
from kbqa.services.repository import DocumentRepository

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Outcome of one pipeline invocation. `error` is set iff not success."""

    document_id: int | None
    success: bool
    chunks_stored: int = 0
    embeddings_generated: int = 0
    error: Exception | None = None

    @classmethod
    def failed(cls, document_id: int | None, error: Exception) -> PipelineResult:
        return cls(document_id=document_id, success=False, error=error)


class PipelineOrchestrator:
    """
    Args:
        settings: Chunk sizes, upload limits and the embedding model name.
        repo: Relational store for documents, chunks and embeddings.
        embedder: Anything with embed_many() (the real Embedder or a fake).
        blobstore: Object store holding the uploaded bytes.
    """

    def __init__(
        self,
        settings: Settings,
        repo: DocumentRepository,
        embedder: TextEmbedder,
        blobstore: BlobStore,
    ) -> None:
        self._settings = settings
        self._repo = repo
        self._embedder = embedder
        self._blobstore = blobstore

    # -----------------------------------------------------------------------
    # Upload
    # -----------------------------------------------------------------------

    def register_upload(
        self,
        owner_id: str,
        filename: str,
        media_type: str,
        payload: bytes,
        employee_visible: bool = False,
        customer_visible: bool = False,
    ) -> Document:
        """
        Validate an upload, store its bytes and create the UPLOADED document.

        Raises:
            ValidationError: Missing owner or filename, empty payload, or a
                payload over max_upload_bytes.
            UnsupportedFormatError: Media type not accepted for ingestion.
            PersistenceError: Blob or row write failed.
        """
        if not owner_id:
            raise ValidationError("Missing owner id")
        name = PurePath(filename or "").name
        if not name:
            raise ValidationError("Missing filename")
        kind = normalise_media_type(media_type)
        if kind not in SUPPORTED_MEDIA_TYPES:
            raise UnsupportedFormatError(media_type)
        if not payload:
            raise ValidationError("File is empty")
        if len(payload) > self._settings.max_upload_bytes:
            raise ValidationError(
                f"File is {len(payload)} bytes, the limit is "
                f"{self._settings.max_upload_bytes} bytes"
            )

        storage_path = f"{owner_id}/{int(time.time() * 1000)}-{name}"
        self._blobstore.put(storage_path, payload)
        try:
            return self._repo.create_document(
                owner_id=owner_id,
                filename=name,
                media_type=kind,
                file_size=len(payload),
                storage_path=storage_path,
                employee_visible=employee_visible,
                customer_visible=customer_visible,
            )
        except KbqaError:
            self._blobstore.delete(storage_path)
            raise

    # -----------------------------------------------------------------------
    # Ingestion
    # -----------------------------------------------------------------------

    def process_document(
        self,
        document_id: int | None,
        media_type: str | None,
        payload: bytes,
        *,
        embed: bool = True,
    ) -> PipelineResult:
        """
        Run the ingestion pipeline for one document.

        Args:
            document_id: Id of an UPLOADED document.
            media_type: Declared media type of `payload`.
            payload: Raw file bytes.
            embed: False stores chunks only (split-stage mode).

        Returns:
            PipelineResult with chunks_stored on success, or the error.
        """
        if document_id is None:
            return PipelineResult.failed(None, ValidationError("Missing document ID"))

        logger.info(
            "Starting ingestion: document_id=%d, type=%s, %d bytes, embed=%s",
            document_id, media_type, len(payload), embed,
        )

        # --- Step 1: Claim (UPLOADED → PROCESSING) ---
        try:
            self._repo.transition_status(document_id, DocumentStatus.PROCESSING)
        except KbqaError as exc:
            logger.warning("Could not claim document %d: %s", document_id, exc)
            return PipelineResult.failed(document_id, exc)

        try:
            # --- Step 2: Parse ---
            logger.info("[doc %d] Step 2/5: Parsing (%s)...", document_id, media_type)
            text = parse(payload, media_type)

            # --- Step 3: Chunk ---
            logger.info(
                "[doc %d] Step 3/5: Chunking %d characters (size=%d, overlap=%d)...",
                document_id, len(text),
                self._settings.chunk_size, self._settings.chunk_overlap,
            )
            chunks = chunk_text(
                text,
                max_size=self._settings.chunk_size,
                overlap=self._settings.chunk_overlap,
            )
            if not chunks:
                raise ChunkingFailedError()
            logger.info("[doc %d] Created %d chunks", document_id, len(chunks))

            if not embed:
                self._repo.add_chunks(document_id, chunks)
                logger.info(
                    "[doc %d] Stored %d chunks; awaiting embeddings",
                    document_id, len(chunks),
                )
                return PipelineResult(
                    document_id=document_id, success=True, chunks_stored=len(chunks),
                )

            # --- Step 4: Embed ---
            logger.info(
                "[doc %d] Step 4/5: Generating embeddings for %d chunks...",
                document_id, len(chunks),
            )
            vectors = self._embedder.embed_many(chunks)

            # --- Step 5: Store chunks + embeddings atomically ---
            logger.info("[doc %d] Step 5/5: Storing chunks and embeddings...", document_id)
            self._repo.add_chunks(
                document_id, chunks, vectors, model=self._settings.embedding_model,
            )

            self._repo.transition_status(document_id, DocumentStatus.COMPLETED)

        except Exception as exc:
            logger.exception("Ingestion failed for document_id=%d: %s", document_id, exc)
            self._mark_failed(document_id, exc)
            return PipelineResult.failed(document_id, exc)

        logger.info(
            "Ingestion complete: document_id=%d, %d chunks", document_id, len(chunks),
        )
        return PipelineResult(
            document_id=document_id,
            success=True,
            chunks_stored=len(chunks),
            embeddings_generated=len(vectors),
        )

    def generate_embeddings(self, document_id: int | None) -> PipelineResult:
        """
        Embed the stored chunks of a PROCESSING document and complete it.

        The second half of split-stage mode. Embeddings are written in chunk
        index order in the same transaction as the PROCESSING -> COMPLETED
        write, so a run that loses to a concurrent one stores nothing and
        leaves the status alone.
        """
        if document_id is None:
            return PipelineResult.failed(None, ValidationError("Missing document ID"))

        try:
            document = self._repo.get_document(document_id)
        except KbqaError as exc:
            return PipelineResult.failed(document_id, exc)

        if document.status is not DocumentStatus.PROCESSING:
            exc = IllegalTransitionError(document.status, DocumentStatus.COMPLETED)
            logger.warning("Cannot embed document %d: %s", document_id, exc)
            return PipelineResult.failed(document_id, exc)

        try:
            chunks = self._repo.list_chunks(document_id)
            if not chunks:
                raise NotFoundError(f"No chunks found for document {document_id}")

            logger.info(
                "[doc %d] Generating embeddings for %d stored chunks...",
                document_id, len(chunks),
            )
            vectors = self._embedder.embed_many([chunk.content for chunk in chunks])
            stored = self._repo.complete_with_embeddings(
                document_id,
                [(chunk.id, vector) for chunk, vector in zip(chunks, vectors)],
                model=self._settings.embedding_model,
            )

        except IllegalTransitionError as exc:
            # Another run completed or failed the document first
            logger.warning("Embeddings for document %d not stored: %s", document_id, exc)
            return PipelineResult.failed(document_id, exc)
        except Exception as exc:
            logger.exception(
                "Embedding generation failed for document_id=%d: %s", document_id, exc,
            )
            self._mark_failed(document_id, exc)
            return PipelineResult.failed(document_id, exc)

        logger.info("Generated %d embeddings for document %d", stored, document_id)
        return PipelineResult(
            document_id=document_id,
            success=True,
            chunks_stored=len(chunks),
            embeddings_generated=stored,
        )

    def process_stored_document(
        self, document_id: int, *, embed: bool = True,
    ) -> PipelineResult:
        """Run process_document() on the bytes already in the blob store."""
        try:
            document = self._repo.get_document(document_id)
            payload = self._blobstore.get(document.storage_path)
        except KbqaError as exc:
            logger.warning("Cannot load document %d: %s", document_id, exc)
            return PipelineResult.failed(document_id, exc)

        return self.process_document(
            document_id, document.media_type, payload, embed=embed,
        )

    # -----------------------------------------------------------------------
    # Internal Helpers
    # -----------------------------------------------------------------------

    def _mark_failed(self, document_id: int, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        try:
            self._repo.transition_status(
                document_id, DocumentStatus.FAILED, error_message=message,
            )
        except KbqaError:
            logger.exception("Could not mark document %d as failed", document_id)
