"""
Operator-triggered regeneration of generated documents.

The document is claimed with a compare-and-swap on its version and
status, so concurrent requests for the same version get a conflict
instead of double-writing. A failure after the claim restores the prior
status and version before the error propagates.
"""
from dataclasses import dataclass
from typing import List, Optional

import structlog

from dealforge.exceptions import (
    DealForgeError,
    RegenerationInProgressError,
    ValidationError,
    VersionConflictError,
)
from dealforge.models.generated_document import (
    ComplianceStatus,
    DocumentStatus,
    DocumentVersion,
    GeneratedDocument,
)
from dealforge.services.audit_sink import AuditSink
from dealforge.services.documents.feedback import build_feedback_text
from dealforge.services.documents.generator import DocumentGenerator, document_key
from dealforge.services.documents.render import DOCX_CONTENT_TYPE
from dealforge.services.rules.rules_engine import RulesEngineResult
from dealforge.services.storage import ObjectStorage
from dealforge.services.store import DealStore

logger = structlog.get_logger(__name__)


@dataclass
class RetryOutcome:
    """Result of retrying one document."""
    document_id: str
    doc_type: str
    success: bool
    version: Optional[int] = None
    status: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None


class RegenerationService:
    """Regenerates one document as a new version."""

    def __init__(
        self,
        store: DealStore,
        storage: ObjectStorage,
        generator: DocumentGenerator,
        audit: Optional[AuditSink] = None,
    ):
        self.store = store
        self.storage = storage
        self.generator = generator
        self.audit = audit

    def _claim(self, doc: GeneratedDocument, expected_version: int) -> None:
        if self.store.compare_and_swap_status(doc.id, expected_version, DocumentStatus.REGENERATING):
            return
        self.store.db.refresh(doc)
        if doc.status == DocumentStatus.REGENERATING:
            raise RegenerationInProgressError(str(doc.id))
        raise VersionConflictError(str(doc.id), expected_version, doc.version)

    def regenerate(
        self,
        doc_id,
        org_id,
        actor_id,
        feedback_notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> GeneratedDocument:
        """
        Regenerate a document with feedback from its current findings.

        Args:
            expected_version: Version the caller last saw; defaults to the current one.

        Returns:
            The document row, now at version n+1.

        Raises:
            DocumentNotFoundError: no such document in the organization.
            VersionConflictError: the document moved past expected_version.
            RegenerationInProgressError: another regeneration holds the document.
        """
        doc = self.store.get_document(doc_id, org_id)
        document_id = doc.id
        prior_status = doc.status
        prior_version = doc.version
        expected = prior_version if expected_version is None else expected_version

        self._claim(doc, expected)
        prior_version = expected
        logger.info("document_regeneration_started", doc_id=str(doc.id), doc_type=doc.doc_type, version=expected)

        db = self.store.db
        try:
            deal = self.store.get_deal(doc.deal_id, org_id)
            if not deal.terms:
                raise ValidationError("Deal has no structured terms to regenerate from")
            terms = RulesEngineResult.from_dict(deal.terms)

            feedback = build_feedback_text(
                doc.compliance_issues, doc.regulatory_checks, doc.verification_issues, notes=feedback_notes,
            )
            outcome = self.generator.generate(deal, terms, doc.doc_type, feedback=feedback, strict=True)

            new_version = expected + 1
            key = document_key(deal.organization_id, deal.id, doc.doc_type, new_version)
            self.storage.put(key, outcome.content, DOCX_CONTENT_TYPE)

            compliance_issues = [i.to_dict() for i in outcome.compliance_issues]
            regulatory_checks = [c.to_dict() for c in outcome.regulatory_checks]
            doc.storage_key = key
            doc.version = new_version
            doc.status = outcome.status
            doc.compliance_status = outcome.compliance_status
            doc.compliance_issues = compliance_issues
            doc.regulatory_checks = regulatory_checks
            doc.verification_status = outcome.verification_status
            doc.verification_issues = [f.to_dict() for f in outcome.verification_issues]
            doc.compliance_cycles = outcome.cycles
            db.add(DocumentVersion(
                document_id=doc.id,
                version=new_version,
                storage_key=key,
                compliance_status=outcome.compliance_status,
                compliance_issues=compliance_issues,
                regulatory_checks=regulatory_checks,
                feedback=feedback,
                created_by=str(actor_id) if actor_id else None,
            ))
            db.commit()
        except Exception as e:
            logger.error(
                "document_regeneration_failed",
                doc_id=str(doc_id),
                restored_status=prior_status.value,
                restored_version=prior_version,
                error=str(e),
            )
            self.store.restore_document(document_id, prior_status, prior_version)
            raise

        db.refresh(doc)
        logger.info(
            "document_regenerated",
            doc_id=str(doc.id),
            doc_type=doc.doc_type,
            version=doc.version,
            status=doc.status.value,
        )
        if self.audit is not None:
            self.audit.record(
                org_id, actor_id, "doc.regenerated",
                target=doc.doc_type,
                metadata={
                    "document_id": str(doc.id),
                    "version": doc.version,
                    "had_feedback": feedback is not None,
                    "new_status": doc.status.value,
                },
            )
        return doc

    def retry_flagged(self, deal_id, org_id, actor_id) -> List[RetryOutcome]:
        """
        Regenerate every document of a deal that was flagged or failed compliance.

        Each document is claimed on its own; one document's conflict or
        failure is reported in its outcome and does not stop the others.

        Raises:
            DealNotFoundError: no such deal in the organization.
            ValidationError: the deal has no structured terms.
        """
        deal = self.store.get_deal(deal_id, org_id)
        if not deal.terms:
            raise ValidationError("Deal has no structured terms to regenerate from")

        candidates = [
            doc for doc in deal.generated_documents
            if doc.status == DocumentStatus.FLAGGED or doc.compliance_status == ComplianceStatus.FAILED
        ]
        outcomes: List[RetryOutcome] = []
        for doc in sorted(candidates, key=lambda d: d.doc_type):
            try:
                regenerated = self.regenerate(doc.id, org_id, actor_id, expected_version=doc.version)
            except DealForgeError as e:
                logger.warning(
                    "document_retry_failed",
                    doc_id=str(doc.id),
                    doc_type=doc.doc_type,
                    error_code=e.error_code,
                    error=e.message,
                )
                outcomes.append(RetryOutcome(
                    document_id=str(doc.id), doc_type=doc.doc_type, success=False,
                    error_code=e.error_code, error=e.message,
                ))
                continue
            outcomes.append(RetryOutcome(
                document_id=str(regenerated.id), doc_type=regenerated.doc_type, success=True,
                version=regenerated.version, status=regenerated.status.value,
            ))

        logger.info(
            "document_retry_complete",
            deal_id=str(deal.id),
            retried=len(outcomes),
            succeeded=sum(1 for o in outcomes if o.success),
        )
        return outcomes
