# =============================================================================
# Unit Tests — Document Repository & Status State Machine
# =============================================================================
#
# Runs against in-memory SQLite. pgvector columns fall back to JSON there,
# so vectors round-trip as plain lists.
# =============================================================================

import pytest
from sqlalchemy import func, select

from kbqa.db.engine import build_session_factory, session_scope
from kbqa.db.models import Chunk, Document, DocumentStatus, Embedding
from kbqa.errors import IllegalTransitionError, NotFoundError, ValidationError


def _count(engine, model) -> int:
    with session_scope(build_session_factory(engine)) as session:
        return session.scalar(select(func.count()).select_from(model))


class TestDocumentStatus:
    @pytest.mark.parametrize(
        "current, target",
        [
            (DocumentStatus.UPLOADED, DocumentStatus.PROCESSING),
            (DocumentStatus.PROCESSING, DocumentStatus.COMPLETED),
            (DocumentStatus.PROCESSING, DocumentStatus.FAILED),
        ],
    )
    def test_allowed_transitions(self, current, target):
        assert current.transition_to(target) is target

    @pytest.mark.parametrize(
        "current, target",
        [
            (DocumentStatus.UPLOADED, DocumentStatus.COMPLETED),
            (DocumentStatus.UPLOADED, DocumentStatus.FAILED),
            (DocumentStatus.PROCESSING, DocumentStatus.PROCESSING),
            (DocumentStatus.COMPLETED, DocumentStatus.PROCESSING),
            (DocumentStatus.COMPLETED, DocumentStatus.FAILED),
            (DocumentStatus.FAILED, DocumentStatus.PROCESSING),
            (DocumentStatus.FAILED, DocumentStatus.COMPLETED),
        ],
    )
    def test_illegal_transitions_raise(self, current, target):
        with pytest.raises(IllegalTransitionError) as exc_info:
            current.transition_to(target)
        assert isinstance(exc_info.value, ValidationError)
        assert current.value in str(exc_info.value)

    def test_terminal_states(self):
        assert DocumentStatus.COMPLETED.is_terminal
        assert DocumentStatus.FAILED.is_terminal
        assert not DocumentStatus.PROCESSING.is_terminal


class TestDocuments:
    def test_create_document_starts_uploaded(self, repo):
        document = repo.create_document(
            owner_id="alice",
            filename="policy.pdf",
            media_type="application/pdf",
            file_size=2048,
            storage_path="alice/1-policy.pdf",
            customer_visible=True,
        )

        assert document.id is not None
        assert document.status is DocumentStatus.UPLOADED
        assert document.owner_visible is True
        assert document.employee_visible is False
        assert document.customer_visible is True
        assert document.created_at is not None

    def test_get_unknown_document_raises(self, repo):
        with pytest.raises(NotFoundError):
            repo.get_document(999)

    def test_transition_persists_new_status(self, repo, make_document):
        document = make_document(status=DocumentStatus.UPLOADED)

        repo.transition_status(document.id, DocumentStatus.PROCESSING)

        assert repo.get_document(document.id).status is DocumentStatus.PROCESSING

    def test_illegal_transition_leaves_status_unchanged(self, repo, make_document):
        document = make_document(status=DocumentStatus.UPLOADED)

        with pytest.raises(IllegalTransitionError):
            repo.transition_status(document.id, DocumentStatus.COMPLETED)

        assert repo.get_document(document.id).status is DocumentStatus.UPLOADED

    def test_second_claim_of_same_document_is_rejected(self, repo, make_document):
        document = make_document(status=DocumentStatus.UPLOADED)
        repo.transition_status(document.id, DocumentStatus.PROCESSING)

        with pytest.raises(IllegalTransitionError):
            repo.transition_status(document.id, DocumentStatus.PROCESSING)

    def test_failed_status_records_truncated_message(self, repo, make_document):
        document = make_document(status=DocumentStatus.PROCESSING)

        repo.transition_status(document.id, DocumentStatus.FAILED, error_message="x" * 5000)

        stored = repo.get_document(document.id)
        assert stored.status is DocumentStatus.FAILED
        assert stored.error_message == "x" * 1000

    def test_transition_of_unknown_document_raises(self, repo):
        with pytest.raises(NotFoundError):
            repo.transition_status(12345, DocumentStatus.PROCESSING)

    def test_status_stored_by_value(self, engine, make_document):
        document = make_document(status=DocumentStatus.COMPLETED)
        with engine.connect() as conn:
            raw = conn.exec_driver_sql(
                "SELECT status FROM documents WHERE id = ?", (document.id,)
            ).scalar_one()
        assert raw == "completed"


class TestChunksAndEmbeddings:
    def test_add_chunks_with_vectors_stores_pairs_in_order(self, repo, engine, make_document):
        document = make_document(status=DocumentStatus.PROCESSING)

        ids = repo.add_chunks(
            document.id,
            ["first", "second", "third"],
            [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]],
            model="fake-embedding",
        )

        chunks = repo.list_chunks(document.id)
        assert [c.id for c in chunks] == ids
        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert [c.content for c in chunks] == ["first", "second", "third"]
        assert _count(engine, Embedding) == 3

    def test_add_chunks_without_vectors_stores_no_embeddings(self, repo, engine, make_document):
        document = make_document(status=DocumentStatus.PROCESSING)
        repo.add_chunks(document.id, ["only text"])
        assert _count(engine, Chunk) == 1
        assert _count(engine, Embedding) == 0

    def test_mismatched_vector_count_stores_nothing(self, repo, engine, make_document):
        document = make_document(status=DocumentStatus.PROCESSING)
        with pytest.raises(ValueError):
            repo.add_chunks(document.id, ["a", "b"], [[1.0, 0.0, 0.0]], model="m")
        assert _count(engine, Chunk) == 0

    def test_complete_with_embeddings_for_stored_chunks(self, repo, engine, make_document):
        document = make_document(status=DocumentStatus.PROCESSING)
        ids = repo.add_chunks(document.id, ["a", "b"])

        stored = repo.complete_with_embeddings(
            document.id,
            [(ids[0], [1.0, 0.0, 0.0]), (ids[1], [0.0, 1.0, 0.0])],
            model="m",
        )

        assert stored == 2
        assert _count(engine, Embedding) == 2
        assert repo.get_document(document.id).status is DocumentStatus.COMPLETED

    @pytest.mark.parametrize("status", [DocumentStatus.COMPLETED, DocumentStatus.FAILED])
    def test_complete_with_embeddings_stores_nothing_once_status_moved_on(
        self, repo, engine, make_document, status,
    ):
        document = make_document(status=DocumentStatus.PROCESSING)
        ids = repo.add_chunks(document.id, ["a"])
        repo.transition_status(document.id, status, error_message="boom")

        with pytest.raises(IllegalTransitionError):
            repo.complete_with_embeddings(document.id, [(ids[0], [1.0, 0.0, 0.0])], model="m")

        assert _count(engine, Embedding) == 0
        assert repo.get_document(document.id).status is status

    def test_delete_document_checks_owner(self, repo, engine, make_document):
        document = make_document(owner_id="alice")

        with pytest.raises(NotFoundError):
            repo.delete_document(document.id, owner_id="bob")
        assert _count(engine, Document) == 1

        assert repo.delete_document(document.id, owner_id="alice") == document.storage_path
        assert _count(engine, Document) == 0

    def test_list_documents_newest_first_for_one_owner(self, repo, make_document):
        first = make_document(owner_id="alice", filename="first.txt")
        make_document(owner_id="bob", filename="other.txt")
        second = make_document(
            owner_id="alice", filename="second.txt", status=DocumentStatus.FAILED,
        )

        documents = repo.list_documents("alice")

        assert [d.id for d in documents] == [second.id, first.id]
        assert documents[0].status is DocumentStatus.FAILED
        assert repo.list_documents("nobody") == []

    def test_delete_document_cascades(self, repo, engine, make_document):
        document = make_document(status=DocumentStatus.PROCESSING)
        repo.add_chunks(document.id, ["a", "b"], [[1.0, 0, 0], [0, 1.0, 0]], model="m")

        storage_path = repo.delete_document(document.id)

        assert storage_path == document.storage_path
        assert _count(engine, Document) == 0
        assert _count(engine, Chunk) == 0
        assert _count(engine, Embedding) == 0

    def test_fetch_candidates_only_returns_embedded_chunks_of_completed_documents(
        self, repo, make_document,
    ):
        done = make_document(filename="done.txt", status=DocumentStatus.PROCESSING)
        repo.add_chunks(done.id, ["done-a", "done-b"], [[1.0, 0, 0], [0, 1.0, 0]], model="m")
        repo.transition_status(done.id, DocumentStatus.COMPLETED)

        # Split-stage document that never got its embeddings
        pending = make_document(filename="pending.txt", status=DocumentStatus.PROCESSING)
        repo.add_chunks(pending.id, ["pending-a"])

        # Embedded chunks whose document later failed
        broken = make_document(filename="broken.txt", status=DocumentStatus.PROCESSING)
        repo.add_chunks(broken.id, ["broken-a"], [[0, 0, 1.0]], model="m")
        repo.transition_status(broken.id, DocumentStatus.FAILED, error_message="boom")

        candidates = repo.fetch_candidates([done.id, pending.id, broken.id])

        assert [c.content for c in candidates] == ["done-a", "done-b"]
        assert all(c.filename == "done.txt" for c in candidates)
        assert [list(c.vector) for c in candidates] == [[1.0, 0, 0], [0, 1.0, 0]]

    def test_fetch_candidates_with_no_documents(self, repo):
        assert repo.fetch_candidates([]) == []


class TestQueryRecords:
    def test_records_are_listed_newest_first_and_limited(self, repo):
        for i in range(25):
            repo.add_query_record("alice", f"question {i}", f"answer {i}", [1, 2])
        repo.add_query_record("bob", "other", "other", [])

        records = repo.list_query_records("alice")

        assert len(records) == 20
        assert records[0].question == "question 24"
        assert records[-1].question == "question 5"
        assert records[0].source_document_ids == [1, 2]

    def test_anonymous_records_are_allowed(self, repo):
        record = repo.add_query_record(None, "q", "a", [3])
        assert record.requester_id is None
        assert record.id is not None
