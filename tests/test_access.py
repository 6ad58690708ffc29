# =============================================================================
# Unit Tests — Access Filter
# =============================================================================
#
# Three owners: alice (an employer), bob (another owner) and carol (alice's
# employee, with documents of her own).
# =============================================================================

import pytest

from kbqa.db.models import DocumentStatus
from kbqa.errors import NoVisibleDocumentsError, NotFoundError, ValidationError
from kbqa.services.access import (
    Actor,
    SearchMode,
    resolve_mode,
    visible_document_ids,
)


@pytest.fixture
def library(make_document):
    return {
        "alice_private": make_document("alice", "private.txt"),
        "alice_staff": make_document("alice", "staff.txt", employee_visible=True),
        "alice_public": make_document("alice", "public.txt", customer_visible=True),
        "alice_draft": make_document(
            "alice", "draft.txt", status=DocumentStatus.PROCESSING,
            employee_visible=True, customer_visible=True,
        ),
        "bob_public": make_document("bob", "faq.txt", customer_visible=True),
        "bob_staff": make_document("bob", "bob-staff.txt", employee_visible=True),
        "carol_own": make_document("carol", "carol.txt"),
    }


def _ids(library, *names):
    return sorted(library[name].id for name in names)


class TestResolveMode:
    def test_customer_flag_wins(self):
        assert resolve_mode(Actor("carol", employer_id="alice"), True) is SearchMode.CUSTOMER

    def test_employer_means_employee(self):
        assert resolve_mode(Actor("carol", employer_id="alice")) is SearchMode.EMPLOYEE

    def test_default_is_owner(self):
        assert resolve_mode(Actor("alice")) is SearchMode.OWNER
        assert resolve_mode(Actor()) is SearchMode.OWNER


class TestVisibleDocumentIds:
    def test_owner_sees_only_own_completed_documents(self, repo, library):
        ids = visible_document_ids(repo, Actor("alice"), SearchMode.OWNER)
        assert ids == _ids(library, "alice_private", "alice_staff", "alice_public")

    def test_owner_never_sees_another_owners_documents(self, repo, library):
        ids = visible_document_ids(repo, Actor("bob"), SearchMode.OWNER)
        assert ids == _ids(library, "bob_public", "bob_staff")

    def test_customer_sees_customer_visible_documents_from_every_owner(self, repo, library):
        ids = visible_document_ids(repo, Actor(), SearchMode.CUSTOMER)
        assert ids == _ids(library, "alice_public", "bob_public")

    def test_employee_sees_own_plus_employers_shared_documents(self, repo, library):
        ids = visible_document_ids(
            repo, Actor("carol", employer_id="alice"), SearchMode.EMPLOYEE,
        )
        assert ids == _ids(library, "alice_staff", "carol_own")

    def test_processing_documents_are_never_visible(self, repo, library):
        draft = library["alice_draft"].id
        for actor, mode in [
            (Actor("alice"), SearchMode.OWNER),
            (Actor(), SearchMode.CUSTOMER),
            (Actor("carol", employer_id="alice"), SearchMode.EMPLOYEE),
        ]:
            assert draft not in visible_document_ids(repo, actor, mode)

    def test_nothing_visible_raises(self, repo, library):
        with pytest.raises(NoVisibleDocumentsError) as exc_info:
            visible_document_ids(repo, Actor("dave"), SearchMode.OWNER)
        assert isinstance(exc_info.value, NotFoundError)
        assert "No documents available" in str(exc_info.value)

    def test_owner_mode_requires_requester(self, repo, library):
        with pytest.raises(ValidationError):
            visible_document_ids(repo, Actor(), SearchMode.OWNER)

    def test_employee_mode_requires_employer(self, repo, library):
        with pytest.raises(ValidationError):
            visible_document_ids(repo, Actor("carol"), SearchMode.EMPLOYEE)
