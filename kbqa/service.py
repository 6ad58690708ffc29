# =============================================================================
# Knowledge Base Service — External Invocation Points
# =============================================================================
#
# The surface a web layer (not part of this package) would call:
#
#   upload()              → DocumentResponse | ErrorResponse
#   get_document()        → DocumentResponse | ErrorResponse
#   list_documents()      → list[DocumentResponse]
#   process_document()    → ProcessDocumentResponse | ErrorResponse
#   generate_embeddings() → EmbeddingsResponse | ErrorResponse
#   query()               → QueryResponse | ErrorResponse   (async)
#   history()             → list[QueryRecordResponse]
#   delete_document()     → None | ErrorResponse
#
# Expected failures (KbqaError) come back as ErrorResponse with the error
# class name as errorType. Anything else is a bug and propagates.
#
# KnowledgeBaseService.from_settings() wires every collaborator from one
# Settings object; tests pass fakes to the constructor instead.
# =============================================================================

from __future__ import annotations

import logging

from kbqa.agents.query_graph import QueryEngine
from kbqa.config import Settings
from kbqa.db.engine import build_engine, build_session_factory, create_schema
from kbqa.errors import KbqaError, NotFoundError
from kbqa.models.requests import (
    GenerateEmbeddingsRequest,
    ProcessDocumentRequest,
    QueryRequest,
    UploadRequest,
)
from kbqa.models.responses import (
    DocumentResponse,
    EmbeddingsResponse,
    ErrorResponse,
    ProcessDocumentResponse,
    QueryRecordResponse,
    QueryResponse,
    SourceReference,
)
from kbqa.pipeline.orchestrator import PipelineOrchestrator
from kbqa.services.access import Actor
from kbqa.services.blobstore import BlobStore, LocalBlobStore
from kbqa.services.embedder import Embedder, TextEmbedder
from kbqa.services.llm import LLMProvider, build_llm_provider
from kbqa.services.repository import (
    DEFAULT_HISTORY_LIMIT,
    DocumentRepository,
    SqlDocumentRepository,
)
from kbqa.services.synthesizer import AnswerSynthesizer

logger = logging.getLogger(__name__)


def make_snippet(content: str, max_length: int) -> str:
    """Chunk text cut to at most max_length characters, ending in '...' if cut."""
    if len(content) <= max_length:
        return content
    return content[: max_length - 3] + "..."


class KnowledgeBaseService:
    def __init__(
        self,
        settings: Settings,
        repo: DocumentRepository,
        blobstore: BlobStore,
        embedder: TextEmbedder,
        llm: LLMProvider,
    ) -> None:
        self._settings = settings
        self._repo = repo
        self._blobstore = blobstore
        self._pipeline = PipelineOrchestrator(settings, repo, embedder, blobstore)
        self._engine = QueryEngine(
            repo,
            embedder,
            AnswerSynthesizer(llm, settings.max_context_tokens),
            top_k=settings.retrieval_top_k,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> KnowledgeBaseService:
        """Build the production wiring: SQLAlchemy, local blobs, real providers."""
        engine = build_engine(settings)
        create_schema(engine)
        repo = SqlDocumentRepository(build_session_factory(engine))

        logger.info(
            "Starting %s v%s (llm=%s/%s, embeddings=%s)",
            settings.app_name, settings.app_version,
            settings.llm_provider, settings.llm_model, settings.embedding_model,
        )
        return cls(
            settings,
            repo=repo,
            blobstore=LocalBlobStore(settings.upload_dir),
            embedder=Embedder(settings),
            llm=build_llm_provider(settings),
        )

    @property
    def pipeline(self) -> PipelineOrchestrator:
        return self._pipeline

    @property
    def query_engine(self) -> QueryEngine:
        return self._engine

    # -----------------------------------------------------------------------
    # Documents
    # -----------------------------------------------------------------------

    def upload(self, request: UploadRequest) -> DocumentResponse | ErrorResponse:
        try:
            document = self._pipeline.register_upload(
                owner_id=request.owner_id,
                filename=request.filename,
                media_type=request.media_type,
                payload=request.payload,
                employee_visible=request.employee_visible,
                customer_visible=request.customer_visible,
            )
        except KbqaError as exc:
            logger.warning("Upload rejected for %s: %s", request.filename, exc)
            return ErrorResponse.from_exception(exc)
        return DocumentResponse.from_document(document)

    def process_document(
        self, request: ProcessDocumentRequest,
    ) -> ProcessDocumentResponse | ErrorResponse:
        if request.payload is None and request.document_id is not None:
            result = self._pipeline.process_stored_document(
                request.document_id, embed=request.embed,
            )
        else:
            result = self._pipeline.process_document(
                request.document_id,
                request.media_type,
                request.payload or b"",
                embed=request.embed,
            )

        if not result.success:
            return ErrorResponse.from_exception(result.error)
        return ProcessDocumentResponse(
            document_id=result.document_id,
            chunks_stored=result.chunks_stored,
        )

    def generate_embeddings(
        self, request: GenerateEmbeddingsRequest,
    ) -> EmbeddingsResponse | ErrorResponse:
        result = self._pipeline.generate_embeddings(request.document_id)
        if not result.success:
            return ErrorResponse.from_exception(result.error)
        return EmbeddingsResponse(
            document_id=result.document_id,
            embeddings_generated=result.embeddings_generated,
        )

    def get_document(
        self, document_id: int, requester_id: str,
    ) -> DocumentResponse | ErrorResponse:
        """Status and metadata of one of the requester's documents."""
        try:
            document = self._repo.get_document(document_id)
            if document.owner_id != requester_id:
                raise NotFoundError(f"Document {document_id} not found")
        except KbqaError as exc:
            return ErrorResponse.from_exception(exc)
        return DocumentResponse.from_document(document)

    def list_documents(self, owner_id: str) -> list[DocumentResponse]:
        """An owner's documents with their processing status, newest first."""
        return [
            DocumentResponse.from_document(document)
            for document in self._repo.list_documents(owner_id)
        ]

    def delete_document(
        self, document_id: int, requester_id: str,
    ) -> ErrorResponse | None:
        """Remove one of the requester's documents: rows first, then bytes."""
        try:
            storage_path = self._repo.delete_document(document_id, owner_id=requester_id)
            self._blobstore.delete(storage_path)
        except KbqaError as exc:
            logger.warning("Delete of document %d refused: %s", document_id, exc)
            return ErrorResponse.from_exception(exc)
        return None

    # -----------------------------------------------------------------------
    # Questions
    # -----------------------------------------------------------------------

    async def query(self, request: QueryRequest) -> QueryResponse | ErrorResponse:
        actor = Actor(actor_id=request.user_id, employer_id=request.employer_id)
        try:
            state = await self._engine.ask(
                request.question, actor, customer_mode=request.customer_mode,
            )
        except KbqaError as exc:
            logger.warning("Query failed (%s): %s", type(exc).__name__, exc)
            return ErrorResponse.from_exception(exc)

        sources = [
            SourceReference(
                document_id=chunk.document_id,
                filename=chunk.filename,
                snippet=make_snippet(chunk.content, self._settings.snippet_length),
                relevance_score=chunk.score,
            )
            for chunk in state["used"]
        ]
        return QueryResponse(answer=state["answer"], sources=sources)

    def history(
        self, requester_id: str, limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[QueryRecordResponse]:
        """A requester's most recent questions, newest first."""
        records = self._repo.list_query_records(requester_id, limit)
        return [QueryRecordResponse.model_validate(record) for record in records]
