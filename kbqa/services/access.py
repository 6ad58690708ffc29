# =============================================================================
# Access Filter — Which Documents a Question May Draw From
# =============================================================================
#
# SEARCH MODES:
#   OWNER    — the requester's own completed documents
#   EMPLOYEE — OWNER scope, plus the employer's completed documents that are
#              flagged employee_visible
#   CUSTOMER — completed documents flagged customer_visible, from any owner;
#              the requester may be anonymous
#
# The filter resolves to a list of document ids. Everything downstream
# (candidate fetch, ranking, sources) is limited to that list.
# =============================================================================

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from sqlalchemy import ColumnElement, and_, or_

from kbqa.db.models import Document
from kbqa.errors import NoVisibleDocumentsError, ValidationError
from kbqa.services.repository import DocumentRepository

logger = logging.getLogger(__name__)


class SearchMode(str, enum.Enum):
    OWNER = "owner"
    EMPLOYEE = "employee"
    CUSTOMER = "customer"


@dataclass(frozen=True)
class Actor:
    """
    The person asking, as identified by the external identity service.

    actor_id is None for anonymous customer-mode questions. employer_id is
    set for employees and names the owner whose documents they may share.
    """

    actor_id: str | None = None
    employer_id: str | None = None


def resolve_mode(actor: Actor, customer_mode: bool = False) -> SearchMode:
    """The customer flag wins; otherwise an employer id means EMPLOYEE."""
    if customer_mode:
        return SearchMode.CUSTOMER
    if actor.employer_id:
        return SearchMode.EMPLOYEE
    return SearchMode.OWNER


def visibility_clause(actor: Actor, mode: SearchMode) -> ColumnElement[bool]:
    """
    SQL criterion selecting the documents `actor` may see in `mode`.

    Raises:
        ValidationError: If OWNER or EMPLOYEE mode has no requester id, or
            EMPLOYEE mode has no employer id.
    """
    if mode is SearchMode.CUSTOMER:
        return Document.customer_visible.is_(True)

    if not actor.actor_id:
        raise ValidationError(f"A requester id is required in {mode.value} mode")

    own = and_(Document.owner_id == actor.actor_id, Document.owner_visible.is_(True))
    if mode is SearchMode.OWNER:
        return own

    if not actor.employer_id:
        raise ValidationError("An employer id is required in employee mode")
    shared = and_(
        Document.owner_id == actor.employer_id,
        Document.employee_visible.is_(True),
    )
    return or_(own, shared)


def visible_document_ids(
    repo: DocumentRepository,
    actor: Actor,
    mode: SearchMode,
) -> list[int]:
    """
    Ids of the completed documents visible to `actor` in `mode`, ascending.

    Raises:
        NoVisibleDocumentsError: If nothing is visible.
        ValidationError: See visibility_clause().
    """
    document_ids = repo.completed_document_ids(visibility_clause(actor, mode))
    logger.info(
        "Access scope: mode=%s, actor=%s, %d documents",
        mode.value, actor.actor_id, len(document_ids),
    )
    if not document_ids:
        raise NoVisibleDocumentsError()
    return document_ids
