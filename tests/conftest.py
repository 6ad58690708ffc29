# =============================================================================
# Shared Test Fixtures
# =============================================================================
#
# Everything runs in-process: SQLite in memory (StaticPool) stands in for
# PostgreSQL, a temp directory for the blob store, and fakes for the
# embedding and generation providers. No API keys are needed.
# =============================================================================

from __future__ import annotations

import pytest

from kbqa.config import Settings
from kbqa.db.engine import build_engine, build_session_factory, create_schema
from kbqa.db.models import DocumentStatus
from kbqa.errors import ExternalServiceError
from kbqa.pipeline.orchestrator import PipelineOrchestrator
from kbqa.service import KnowledgeBaseService
from kbqa.services.blobstore import LocalBlobStore
from kbqa.services.llm import LLMResponse
from kbqa.services.repository import SqlDocumentRepository

# ---------------------------------------------------------------------------
# Fake providers
# ---------------------------------------------------------------------------


class FakeEmbedder:
    """
    Deterministic 3-dimensional embedder.

    `keywords` maps a substring to the vector returned for any text that
    contains it (first match wins). Texts containing any `fail_on`
    substring raise ExternalServiceError.
    """

    model = "fake-embedding"
    dimensions = 3

    def __init__(self) -> None:
        self.keywords: dict[str, list[float]] = {}
        self.fail_on: set[str] = set()
        self.failure_message = "embedding provider unavailable"
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if any(marker in text for marker in self.fail_on):
            raise ExternalServiceError(self.failure_message)
        for keyword, vector in self.keywords.items():
            if keyword in text:
                return list(vector)
        return [1.0, 1.0, 1.0]

    def embed_many(self, texts):
        return [self.embed(text) for text in texts]


class FakeLLM:
    """Records every call and answers with a fixed string."""

    def __init__(self, answer: str = "Refunds are issued within 30 days.") -> None:
        self.answer = answer
        self.calls: list[dict] = []

    async def complete(self, messages, system=None, temperature=None, max_tokens=None):
        self.calls.append({"messages": messages, "system": system})
        return LLMResponse(
            content=self.answer, model="fake-llm", input_tokens=12, output_tokens=7,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+pysqlite:///:memory:",
        upload_dir=str(tmp_path / "uploads"),
        embedding_api_key="test-embedding-key",
        embedding_model="fake-embedding",
        embedding_dimensions=3,
        embedding_retry_wait_seconds=0,
        llm_api_key="test-llm-key",
    )


@pytest.fixture
def engine(settings):
    engine = build_engine(settings)
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def repo(engine) -> SqlDocumentRepository:
    return SqlDocumentRepository(build_session_factory(engine))


@pytest.fixture
def blobstore(settings) -> LocalBlobStore:
    return LocalBlobStore(settings.upload_dir)


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def pipeline(settings, repo, fake_embedder, blobstore) -> PipelineOrchestrator:
    return PipelineOrchestrator(settings, repo, fake_embedder, blobstore)


@pytest.fixture
def service(settings, repo, blobstore, fake_embedder, fake_llm) -> KnowledgeBaseService:
    return KnowledgeBaseService(
        settings,
        repo=repo,
        blobstore=blobstore,
        embedder=fake_embedder,
        llm=fake_llm,
    )


@pytest.fixture
def make_document(repo):
    """
    Factory for documents in a given status (default COMPLETED), skipping
    the pipeline.
    """

    def _make(
        owner_id: str = "alice",
        filename: str = "notes.txt",
        status: DocumentStatus = DocumentStatus.COMPLETED,
        employee_visible: bool = False,
        customer_visible: bool = False,
    ):
        document = repo.create_document(
            owner_id=owner_id,
            filename=filename,
            media_type="text/plain",
            file_size=10,
            storage_path=f"{owner_id}/{filename}",
            employee_visible=employee_visible,
            customer_visible=customer_visible,
        )
        if status is not DocumentStatus.UPLOADED:
            repo.transition_status(document.id, DocumentStatus.PROCESSING)
        if status in (DocumentStatus.COMPLETED, DocumentStatus.FAILED):
            repo.transition_status(document.id, status, error_message="failed")
        return repo.get_document(document.id)

    return _make
