"""
Document generation with a bounded compliance loop.

Each document is drafted, reviewed, checked and verified. When the legal
review or verification blocks the draft, findings are fed back into the
next draft. The loop never runs more than max_compliance_cycles times;
a document still blocked after the last cycle is returned flagged for
human review with its outstanding findings.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from dealforge.config import get_settings
from dealforge.exceptions import ValidationError
from dealforge.models.findings import ComplianceIssue, RegulatoryCheck, VerificationFinding
from dealforge.models.generated_document import (
    ComplianceStatus,
    DocumentStatus,
    DocumentVersion,
    DocVerificationStatus,
    GeneratedDocument,
)
from dealforge.services.documents.feedback import build_feedback_text
from dealforge.services.documents.legal_review import LegalReviewer
from dealforge.services.documents.program_compliance import run_program_checks
from dealforge.services.documents.prose import REQUIRED_KEYS, ZERO_PROSE_DOCS, ProseGenerator
from dealforge.services.documents.render import DOCX_CONTENT_TYPE, build_document, doc_title, document_text, to_bytes
from dealforge.services.documents.verify_doc import verify_document
from dealforge.services.llm_client import GenerativeService
from dealforge.services.rules.loan_programs import LoanProgram, get_loan_program
from dealforge.services.rules.rules_engine import RulesEngineResult
from dealforge.services.storage import ObjectStorage

logger = structlog.get_logger(__name__)

REAL_PROPERTY_DOCS = frozenset({
    "deed_of_trust", "environmental_indemnity", "assignment_of_leases", "flood_determination",
})
SBA_FORMS = frozenset({"sba_form_1919", "sba_form_159", "sba_form_148", "sba_form_1050"})


@dataclass
class GenerationOutcome:
    doc_type: str
    content: bytes
    prose: Dict[str, Any]
    compliance_status: ComplianceStatus
    compliance_issues: List[ComplianceIssue] = field(default_factory=list)
    regulatory_checks: List[RegulatoryCheck] = field(default_factory=list)
    verification_status: DocVerificationStatus = DocVerificationStatus.PASSED
    verification_issues: List[VerificationFinding] = field(default_factory=list)
    cycles: int = 1
    needs_review: bool = False
    status: DocumentStatus = DocumentStatus.REVIEWED


def document_key(org_id, deal_id, doc_type: str, version: int) -> str:
    return f"{org_id}/{deal_id}/loan-documents/{doc_type}-v{version}.docx"


def compliance_status_for(review_passed: bool, issues: List[ComplianceIssue],
                          checks: List[RegulatoryCheck]) -> ComplianceStatus:
    if not review_passed or any(not c.passed and c.severity == "critical" for c in checks):
        return ComplianceStatus.FAILED
    if any(i.severity in ("critical", "warning") for i in issues) or any(not c.passed for c in checks):
        return ComplianceStatus.NEEDS_REVIEW
    return ComplianceStatus.PASSED


def has_real_property(deal, program: LoanProgram) -> bool:
    if getattr(deal, "property_value", None):
        return True
    return any(
        "real_estate" in t or "residential" in t or "real property" in t
        for t in (c.lower() for c in program.structuring.collateral_types)
    )


def filter_required_docs(deal, terms: RulesEngineResult, program: LoanProgram) -> List[str]:
    """Drop program documents that do not apply to this deal."""
    real_property = has_real_property(deal, program)
    selected = []
    for doc_type in program.output_docs:
        if doc_type == "guaranty" and not terms.personal_guaranty:
            continue
        if doc_type in REAL_PROPERTY_DOCS and not real_property:
            continue
        if doc_type in ("sba_authorization", "cdc_debenture") and not program.id.startswith("sba_"):
            continue
        if doc_type == "cdc_debenture" and program.id != "sba_504":
            continue
        if doc_type in SBA_FORMS and not program.id.startswith("sba_"):
            continue
        if doc_type == "sba_form_1050" and program.id != "sba_7a":
            continue
        if doc_type == "borrowing_base_agreement" and program.id != "line_of_credit":
            continue
        if doc_type == "compliance_certificate" and not terms.covenants:
            continue
        selected.append(doc_type)
    return selected


class DocumentGenerator:
    """Drafts, reviews and renders loan documents."""

    def __init__(
        self,
        llm: Optional[GenerativeService] = None,
        max_compliance_cycles: Optional[int] = None,
        prose_generator: Optional[ProseGenerator] = None,
        reviewer: Optional[LegalReviewer] = None,
    ):
        self.max_compliance_cycles = max_compliance_cycles or get_settings().max_compliance_cycles
        self.prose_generator = prose_generator or ProseGenerator(llm)
        self.reviewer = reviewer or LegalReviewer(llm)

    def generate(
        self,
        deal,
        terms: RulesEngineResult,
        doc_type: str,
        feedback: Optional[str] = None,
        strict: bool = False,
    ) -> GenerationOutcome:
        """
        Generate one document.

        Args:
            feedback: Corrections from a previous version or an operator.
            strict: Propagate provider failures instead of falling back to placeholders.
        """
        cycle_feedback = feedback
        cycles = 0
        while True:
            cycles += 1
            prose = self.prose_generator.generate(doc_type, deal, terms, cycle_feedback, strict=strict)
            review = self.reviewer.review(doc_type, deal, terms, prose)
            prose = review.prose
            checks = review.checks + run_program_checks(terms.program_id, deal, terms)
            document = build_document(doc_type, deal, terms, prose)
            verification_status, findings = verify_document(doc_type, deal, terms, prose, document_text(document))

            blocked = not review.passed or verification_status == DocVerificationStatus.FAILED
            if not blocked or doc_type not in REQUIRED_KEYS or cycles >= self.max_compliance_cycles:
                break

            cycle_feedback = build_feedback_text(
                review.issues, [c for c in checks if not c.passed], findings, notes=feedback,
            )
            logger.info(
                "document_compliance_cycle",
                doc_type=doc_type,
                cycle=cycles,
                legal_passed=review.passed,
                verification=verification_status.value,
            )

        compliance_status = compliance_status_for(review.passed, review.issues, checks)
        needs_review = (
            compliance_status == ComplianceStatus.FAILED or verification_status == DocVerificationStatus.FAILED
        )
        if needs_review:
            status = DocumentStatus.FLAGGED
        elif doc_type not in REQUIRED_KEYS and doc_type not in ZERO_PROSE_DOCS:
            status = DocumentStatus.DRAFT
        else:
            status = DocumentStatus.REVIEWED

        logger.info(
            "document_generated",
            doc_type=doc_type,
            status=status.value,
            cycles=cycles,
            compliance=compliance_status.value,
            verification=verification_status.value,
        )
        return GenerationOutcome(
            doc_type=doc_type,
            content=to_bytes(document),
            prose=prose,
            compliance_status=compliance_status,
            compliance_issues=review.issues,
            regulatory_checks=checks,
            verification_status=verification_status,
            verification_issues=findings,
            cycles=cycles,
            needs_review=needs_review,
            status=status,
        )

    def failure_outcome(self, deal, terms: RulesEngineResult, doc_type: str, error: Exception) -> GenerationOutcome:
        """Placeholder document recording a generation failure."""
        document = build_document(doc_type, deal, terms, {
            "generationError": (
                f"The {doc_title(doc_type)} could not be generated: {str(error)[:200]}. "
                "Retry generation or prepare this document manually."
            ),
        })
        return GenerationOutcome(
            doc_type=doc_type,
            content=to_bytes(document),
            prose={},
            compliance_status=ComplianceStatus.FAILED,
            compliance_issues=[ComplianceIssue(
                "critical", "generation", f"Document generation failed: {str(error)[:200]}",
                "Retry generation or create document manually",
            )],
            verification_status=DocVerificationStatus.FAILED,
            needs_review=True,
            status=DocumentStatus.FLAGGED,
        )

    def generate_all(
        self,
        db: Session,
        storage: ObjectStorage,
        deal,
        terms: RulesEngineResult,
    ) -> List[GeneratedDocument]:
        """
        Generate every applicable document for a deal as version 1.

        Document types that already have a row are left alone so a
        restarted stage does not duplicate them.
        """
        program = get_loan_program(terms.program_id)
        if program is None:
            raise ValidationError(f"Unknown loan program: {terms.program_id}")
        existing = {
            d.doc_type for d in db.query(GeneratedDocument).filter(GeneratedDocument.deal_id == deal.id).all()
        }
        created: List[GeneratedDocument] = []

        for doc_type in filter_required_docs(deal, terms, program):
            if doc_type in existing:
                continue
            try:
                outcome = self.generate(deal, terms, doc_type)
            except Exception as e:
                logger.error("document_generation_failed", deal_id=str(deal.id), doc_type=doc_type, error=str(e))
                outcome = self.failure_outcome(deal, terms, doc_type, e)

            key = document_key(deal.organization_id, deal.id, doc_type, 1)
            storage.put(key, outcome.content, DOCX_CONTENT_TYPE)

            doc = GeneratedDocument(
                deal_id=deal.id,
                doc_type=doc_type,
                storage_key=key,
                version=1,
                status=outcome.status,
                compliance_status=outcome.compliance_status,
                compliance_issues=[i.to_dict() for i in outcome.compliance_issues],
                regulatory_checks=[c.to_dict() for c in outcome.regulatory_checks],
                verification_status=outcome.verification_status,
                verification_issues=[f.to_dict() for f in outcome.verification_issues],
                compliance_cycles=outcome.cycles,
            )
            doc.versions.append(DocumentVersion(
                version=1,
                storage_key=key,
                compliance_status=outcome.compliance_status,
                compliance_issues=doc.compliance_issues,
                regulatory_checks=doc.regulatory_checks,
                created_by="pipeline",
            ))
            db.add(doc)
            db.commit()
            created.append(doc)

        logger.info(
            "documents_generated",
            deal_id=str(deal.id),
            count=len(created),
            flagged=sum(1 for d in created if d.status == DocumentStatus.FLAGGED),
        )
        return created
