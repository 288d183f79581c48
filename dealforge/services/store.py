"""
Deal persistence helpers.

Wraps the SQLAlchemy session with the lookups the pipeline and API need.
Lookups are scoped to an organization and ignore soft-deleted deals.
Status changes that race with other workers go through single-statement
compare-and-swap updates.
"""
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy.orm import Session

from dealforge.exceptions import DealNotFoundError, DocumentNotFoundError, IssueNotFoundError, ValidationError
from dealforge.models.deal import Deal, DealStatus
from dealforge.models.generated_document import DocumentStatus, GeneratedDocument
from dealforge.models.verification_issue import IssueStatus, VerificationIssue

logger = structlog.get_logger(__name__)


class DealStore:
    """Organization-scoped access to deals and their child rows."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Deals
    # ------------------------------------------------------------------

    def find_by_id(self, deal_id, org_id) -> Optional[Deal]:
        return (
            self.db.query(Deal)
            .filter(Deal.id == deal_id, Deal.organization_id == org_id, Deal.deleted_at.is_(None))
            .first()
        )

    def get_deal(self, deal_id, org_id) -> Deal:
        deal = self.find_by_id(deal_id, org_id)
        if deal is None:
            raise DealNotFoundError(str(deal_id))
        return deal

    def update(self, deal_id, patch: Dict[str, Any]) -> Deal:
        """Apply a field patch to a deal. Status is only written through transitions."""
        if "status" in patch:
            raise ValidationError("Deal status cannot be patched directly")
        deal = self.db.query(Deal).filter(Deal.id == deal_id).first()
        if deal is None:
            raise DealNotFoundError(str(deal_id))
        for key, value in patch.items():
            if not hasattr(Deal, key):
                raise ValidationError(f"Unknown deal field: {key}")
            setattr(deal, key, value)
        self.db.commit()
        self.db.refresh(deal)
        return deal

    def claim_deal_status(self, deal_id, expected: Iterable[DealStatus], new_status: DealStatus) -> bool:
        """
        Move a deal to new_status only if it is currently in one of expected.

        Returns True when this caller won the update.
        """
        rows = (
            self.db.query(Deal)
            .filter(Deal.id == deal_id, Deal.status.in_(list(expected)), Deal.deleted_at.is_(None))
            .update({Deal.status: new_status}, synchronize_session=False)
        )
        self.db.commit()
        return rows == 1

    # ------------------------------------------------------------------
    # Generated documents
    # ------------------------------------------------------------------

    def get_document(self, doc_id, org_id) -> GeneratedDocument:
        doc = (
            self.db.query(GeneratedDocument)
            .join(Deal, GeneratedDocument.deal_id == Deal.id)
            .filter(GeneratedDocument.id == doc_id, Deal.organization_id == org_id, Deal.deleted_at.is_(None))
            .first()
        )
        if doc is None:
            raise DocumentNotFoundError(str(doc_id))
        return doc

    def compare_and_swap_status(self, doc_id, expected_version: int, new_status: DocumentStatus) -> bool:
        """
        Set a document's status if it is still at expected_version and not regenerating.

        A single UPDATE statement; zero affected rows means another writer got there first.
        """
        rows = (
            self.db.query(GeneratedDocument)
            .filter(
                GeneratedDocument.id == doc_id,
                GeneratedDocument.version == expected_version,
                GeneratedDocument.status != DocumentStatus.REGENERATING,
            )
            .update({GeneratedDocument.status: new_status}, synchronize_session=False)
        )
        self.db.commit()
        logger.debug("document_cas", doc_id=str(doc_id), expected_version=expected_version, won=rows == 1)
        return rows == 1

    def restore_document(self, doc_id, status: DocumentStatus, version: int) -> None:
        self.db.rollback()
        self.db.query(GeneratedDocument).filter(GeneratedDocument.id == doc_id).update(
            {GeneratedDocument.status: status, GeneratedDocument.version: version},
            synchronize_session=False,
        )
        self.db.commit()

    # ------------------------------------------------------------------
    # Verification issues
    # ------------------------------------------------------------------

    def list_issues(self, deal_id, status: Optional[IssueStatus] = None) -> List[VerificationIssue]:
        query = self.db.query(VerificationIssue).filter(VerificationIssue.deal_id == deal_id)
        if status is not None:
            query = query.filter(VerificationIssue.status == status)
        return query.order_by(VerificationIssue.created_at).all()

    def count_pending_issues(self, deal_id) -> int:
        return (
            self.db.query(VerificationIssue)
            .filter(VerificationIssue.deal_id == deal_id, VerificationIssue.status == IssueStatus.PENDING)
            .count()
        )

    def get_issue(self, issue_id, org_id) -> VerificationIssue:
        issue = (
            self.db.query(VerificationIssue)
            .join(Deal, VerificationIssue.deal_id == Deal.id)
            .filter(VerificationIssue.id == issue_id, Deal.organization_id == org_id, Deal.deleted_at.is_(None))
            .first()
        )
        if issue is None:
            raise IssueNotFoundError(str(issue_id))
        return issue
