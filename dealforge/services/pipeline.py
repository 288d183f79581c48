"""
Deal pipeline state machine.

A deal moves through OCR, classification, extraction, verification,
self-resolution, the review gate, analysis, structuring, document
generation and the credit memo. Two stages can pause the deal for an
operator: the review gate (NEEDS_REVIEW) and term review
(NEEDS_TERM_REVIEW). Any stage failure parks the deal in ERROR with the
failing step recorded; a later run restarts from that step.

Every stage reads its inputs from persisted rows, so a restart never
depends on state from a previous process.
"""
import copy
import os
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Set, Tuple

import structlog

from dealforge.config import get_settings
from dealforge.exceptions import (
    EntityNotEditableError,
    InvalidTransitionError,
    PipelineBusyError,
    UnrecoverablePipelineError,
    UnresolvedIssuesError,
    ValidationError,
)
from dealforge.middleware.logging import bind_deal_context
from dealforge.models.deal import Deal, DealStatus
from dealforge.models.source_document import SourceDocument
from dealforge.models.verification_issue import (
    RESOLUTION_STATUSES,
    IssueCheckType,
    IssueStatus,
    VerificationIssue,
)
from dealforge.services.analysis import analyze_deal
from dealforge.services.audit_sink import AuditSink
from dealforge.services.credit_memo import CreditMemoService
from dealforge.services.documents.generator import DocumentGenerator
from dealforge.services.extraction.ai_extractor import AIExtractor
from dealforge.services.extraction.classifier import classify_with_fallback
from dealforge.services.extraction.field_mapper import map_key_values
from dealforge.services.extraction.ocr import OCRResult, OCRService, get_ocr_service
from dealforge.services.extraction.reconciler import reconcile_extractions
from dealforge.services.extraction.resolver import resolve_discrepancies
from dealforge.services.extraction.values import set_path
from dealforge.services.llm_client import GenerativeService
from dealforge.services.rules.loan_programs import get_loan_program
from dealforge.services.rules.compliance_review import review_deal_compliance
from dealforge.services.rules.rules_engine import (
    BASE_RATES,
    RulesEngineResult,
    RulesInput,
    calculate_monthly_payment,
    run_rules_engine,
)
from dealforge.services.rules.state_rules import get_state_rule
from dealforge.services.storage import ObjectStorage
from dealforge.services.store import DealStore
from dealforge.services.verification.cross_document import DocumentExtraction
from dealforge.services.verification.engine import VerificationInput, collect_discrepancies, verify_deal

logger = structlog.get_logger(__name__)


# =============================================================================
# Transition table
# =============================================================================

STAGES: List[Tuple[str, DealStatus]] = [
    ("ocr", DealStatus.PROCESSING_OCR),
    ("classify", DealStatus.CLASSIFYING),
    ("extract", DealStatus.EXTRACTING),
    ("verify", DealStatus.VERIFYING),
    ("resolve", DealStatus.RESOLVING),
    ("gate", DealStatus.RESOLVING),
    ("analyze", DealStatus.ANALYZING),
    ("structure", DealStatus.STRUCTURING),
    ("generate_docs", DealStatus.GENERATING_DOCS),
    ("generate_memo", DealStatus.GENERATING_MEMO),
]
STAGE_NAMES = [name for name, _ in STAGES]
STAGE_STATUS: Dict[str, DealStatus] = dict(STAGES)
# First stage run under each processing status
STATUS_STAGE: Dict[DealStatus, str] = {status: name for name, status in reversed(STAGES)}

PROCESSING_STATUSES: FrozenSet[DealStatus] = frozenset(status for _, status in STAGES)
STARTABLE_STATUSES: FrozenSet[DealStatus] = frozenset({DealStatus.CREATED, DealStatus.UPLOADED, DealStatus.ERROR})
EDITABLE_STATUSES: FrozenSet[DealStatus] = frozenset({
    DealStatus.CREATED, DealStatus.UPLOADED, DealStatus.NEEDS_REVIEW,
})
EDITABLE_FIELDS = frozenset({
    "borrower_name", "loan_amount", "loan_purpose", "property_state", "property_value",
    "loan_program", "is_commercial", "requested_term_months",
})

ALLOWED_TRANSITIONS: Dict[DealStatus, FrozenSet[DealStatus]] = {
    DealStatus.CREATED: frozenset({DealStatus.UPLOADED, DealStatus.PROCESSING_OCR, DealStatus.ERROR}),
    DealStatus.UPLOADED: frozenset({DealStatus.PROCESSING_OCR, DealStatus.ERROR}),
    DealStatus.PROCESSING_OCR: frozenset({DealStatus.CLASSIFYING, DealStatus.ERROR}),
    DealStatus.CLASSIFYING: frozenset({DealStatus.EXTRACTING, DealStatus.ERROR}),
    DealStatus.EXTRACTING: frozenset({DealStatus.VERIFYING, DealStatus.ERROR}),
    DealStatus.VERIFYING: frozenset({
        DealStatus.RESOLVING, DealStatus.NEEDS_REVIEW, DealStatus.ANALYZING, DealStatus.ERROR,
    }),
    DealStatus.RESOLVING: frozenset({DealStatus.NEEDS_REVIEW, DealStatus.ANALYZING, DealStatus.ERROR}),
    DealStatus.NEEDS_REVIEW: frozenset({DealStatus.VERIFYING, DealStatus.ANALYZING, DealStatus.ERROR}),
    DealStatus.ANALYZING: frozenset({DealStatus.STRUCTURING, DealStatus.ERROR}),
    DealStatus.STRUCTURING: frozenset({
        DealStatus.NEEDS_TERM_REVIEW, DealStatus.GENERATING_DOCS, DealStatus.ERROR,
    }),
    DealStatus.NEEDS_TERM_REVIEW: frozenset({
        DealStatus.GENERATING_DOCS, DealStatus.STRUCTURING, DealStatus.ERROR,
    }),
    DealStatus.GENERATING_DOCS: frozenset({DealStatus.GENERATING_MEMO, DealStatus.ERROR}),
    DealStatus.GENERATING_MEMO: frozenset({DealStatus.COMPLETE, DealStatus.ERROR}),
    DealStatus.COMPLETE: frozenset(),
    DealStatus.ERROR: PROCESSING_STATUSES,
}


def validate_transition(current: DealStatus, new_status: DealStatus) -> None:
    if new_status not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, new_status.value)


def transition(deal: Deal, new_status: DealStatus, store: Optional[DealStore] = None) -> None:
    """
    Move a deal to a new status.

    With a store, the move is a compare-and-swap against the status the
    caller saw, so two workers cannot both claim the deal.

    Raises:
        InvalidTransitionError: the move is not in ALLOWED_TRANSITIONS.
        PipelineBusyError: another worker changed the status first.
    """
    current = deal.status
    validate_transition(current, new_status)
    if store is not None:
        if not store.claim_deal_status(deal.id, [current], new_status):
            store.db.refresh(deal)
            raise PipelineBusyError(str(deal.id), deal.status.value)
        store.db.refresh(deal)
    else:
        deal.status = new_status
    logger.info("deal_transition", deal_id=str(deal.id), from_status=current.value, to_status=new_status.value)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def claim_is_stale(deal: Deal, now: Optional[datetime] = None, timeout_seconds: Optional[int] = None) -> bool:
    """True when a processing deal's worker has not touched it within the claim timeout."""
    if deal.status not in PROCESSING_STATUSES:
        return False
    last_seen = deal.claimed_at or deal.updated_at
    if last_seen is None:
        return False
    if timeout_seconds is None:
        timeout_seconds = get_settings().pipeline_claim_timeout_seconds
    now = now or _now()
    return (now - _as_utc(last_seen)).total_seconds() > timeout_seconds


def ensure_runnable(deal: Deal) -> None:
    """
    A processing deal is runnable only once its claim has gone stale.

    Raises:
        PipelineBusyError: the deal is already being processed.
        InvalidTransitionError: the deal is paused or complete.
    """
    if deal.status in PROCESSING_STATUSES:
        if claim_is_stale(deal):
            return
        raise PipelineBusyError(str(deal.id), deal.status.value)
    if deal.status not in STARTABLE_STATUSES:
        raise InvalidTransitionError(deal.status.value, DealStatus.PROCESSING_OCR.value)


def ensure_resumable(deal: Deal, pending_issues: int) -> None:
    if deal.status != DealStatus.NEEDS_REVIEW:
        raise InvalidTransitionError(deal.status.value, DealStatus.VERIFYING.value)
    if pending_issues:
        raise UnresolvedIssuesError(pending_issues)


def ensure_terms_pending(deal: Deal) -> None:
    if deal.status != DealStatus.NEEDS_TERM_REVIEW:
        raise InvalidTransitionError(deal.status.value, DealStatus.GENERATING_DOCS.value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


IssueKey = Tuple[Optional[str], str]


# =============================================================================
# Pipeline
# =============================================================================

class DealPipeline:
    """Runs, pauses and resumes the deal pipeline."""

    def __init__(
        self,
        store: DealStore,
        storage: ObjectStorage,
        llm: Optional[GenerativeService] = None,
        audit: Optional[AuditSink] = None,
        generator: Optional[DocumentGenerator] = None,
        ocr: Optional[OCRService] = None,
    ):
        self.store = store
        self.db = store.db
        self.storage = storage
        self.llm = llm if llm is not None and llm.is_configured else None
        self.audit = audit
        self.generator = generator or DocumentGenerator(llm)
        self.ocr = ocr or get_ocr_service()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self, deal_id, org_id, actor_id=None, claim_token: Optional[str] = None) -> Deal:
        """
        Start the pipeline, or restart it at the failed step of an ERROR deal.

        A deal left in a processing status by a lost worker is first moved to
        ERROR at the step it was on, then restarted there.

        Raises:
            PipelineBusyError: the deal is already being processed.
            InvalidTransitionError: the deal is paused or complete.
        """
        deal = self.store.get_deal(deal_id, org_id)
        self._recover_abandoned(deal, claim_token, actor_id)
        ensure_runnable(deal)

        start = "ocr"
        if deal.status == DealStatus.ERROR and deal.error_step in STAGE_STATUS:
            start = deal.error_step
        if start == "ocr" and not self._documents(deal):
            raise ValidationError("Deal has no source documents")

        transition(deal, STAGE_STATUS[start], store=self.store)
        self._stamp_claim(deal, claim_token)
        logger.info("pipeline_started", deal_id=str(deal.id), start_step=start)
        self._audit(deal, actor_id, "pipeline.started", start_step=start)
        return self._run_from(deal, start)

    def resume_after_review(self, deal_id, org_id, actor_id=None, claim_token: Optional[str] = None) -> Deal:
        """
        Continue a deal paused for review once every issue is resolved.

        Corrected values are written into the extracted data and the deal is
        verified again; a new discrepancy pauses it once more.

        Raises:
            InvalidTransitionError: the deal is not in NEEDS_REVIEW.
            UnresolvedIssuesError: PENDING issues remain.
        """
        deal = self.store.get_deal(deal_id, org_id)
        if self._recover_abandoned(deal, claim_token, actor_id):
            return self.run(deal_id, org_id, actor_id=actor_id, claim_token=claim_token)
        ensure_resumable(deal, self.store.count_pending_issues(deal.id))

        transition(deal, DealStatus.VERIFYING, store=self.store)
        self._stamp_claim(deal, claim_token)
        self._audit(deal, actor_id, "pipeline.resumed")
        return self._run_from(deal, "verify")

    def approve_terms(self, deal_id, org_id, actor_id=None, claim_token: Optional[str] = None) -> Deal:
        """
        Accept terms held for review and generate documents.

        Raises:
            InvalidTransitionError: the deal is not in NEEDS_TERM_REVIEW.
        """
        deal = self.store.get_deal(deal_id, org_id)
        if self._recover_abandoned(deal, claim_token, actor_id):
            return self.run(deal_id, org_id, actor_id=actor_id, claim_token=claim_token)
        ensure_terms_pending(deal)
        transition(deal, DealStatus.GENERATING_DOCS, store=self.store)
        self._stamp_claim(deal, claim_token)
        self._audit(deal, actor_id, "terms.approved")
        return self._run_from(deal, "generate_docs")

    def _recover_abandoned(self, deal: Deal, claim_token: Optional[str], actor_id=None) -> bool:
        """
        Park a deal whose worker was lost in ERROR at the step it was on.

        The claim counts as abandoned when the same task is delivered again
        or when no stage has started within the claim timeout.

        Raises:
            PipelineBusyError: another worker moved the deal first.
        """
        if deal.status not in PROCESSING_STATUSES:
            return False
        redelivered = claim_token is not None and deal.claim_token == claim_token
        if not redelivered and not claim_is_stale(deal):
            return False

        stranded = deal.status
        step = deal.last_step if deal.last_step in STAGE_STATUS else STATUS_STAGE[stranded]
        if not self.store.claim_deal_status(deal.id, [stranded], DealStatus.ERROR):
            self.db.refresh(deal)
            raise PipelineBusyError(str(deal.id), deal.status.value)
        self.db.refresh(deal)
        deal.error_step = step
        deal.error_message = f"Worker stopped during {step}"
        deal.claim_token = None
        self.db.commit()

        logger.warning(
            "pipeline_claim_recovered",
            deal_id=str(deal.id),
            step=step,
            stranded_status=stranded.value,
            reason="redelivered" if redelivered else "stale",
        )
        self._audit(deal, actor_id, "pipeline.recovered", step=step)
        return True

    def _stamp_claim(self, deal: Deal, claim_token: Optional[str]) -> None:
        deal.claimed_at = _now()
        deal.claim_token = claim_token
        self.db.commit()

    # ------------------------------------------------------------------
    # Operator edits
    # ------------------------------------------------------------------

    def resolve_issue(
        self,
        issue_id,
        org_id,
        resolution,
        actor_id=None,
        note: Optional[str] = None,
        corrected_value: Any = None,
    ) -> VerificationIssue:
        """
        Resolve a PENDING verification issue.

        Args:
            resolution: CONFIRMED, CORRECTED or NOTED.
            corrected_value: Required for CORRECTED.

        Raises:
            IssueNotFoundError: no such issue in the organization.
            ValidationError: bad resolution, issue already resolved, or missing value.
        """
        issue = self.store.get_issue(issue_id, org_id)
        raw = resolution.value if isinstance(resolution, IssueStatus) else str(resolution).upper()
        try:
            status = IssueStatus(raw)
        except ValueError:
            status = None
        if status not in RESOLUTION_STATUSES:
            raise ValidationError(
                f"Invalid resolution: {resolution}",
                errors=[{"field": "resolution", "message": "Must be CONFIRMED, CORRECTED or NOTED"}],
            )
        if issue.status != IssueStatus.PENDING:
            raise ValidationError(f"Issue {issue.id} is already {issue.status.value}")
        if status == IssueStatus.CORRECTED and corrected_value is None:
            raise ValidationError(
                "A corrected value is required",
                errors=[{"field": "corrected_value", "message": "Required for CORRECTED"}],
            )

        issue.status = status
        issue.resolved_by = str(actor_id) if actor_id else None
        issue.resolved_at = _now()
        issue.resolution_note = note
        issue.corrected_value = corrected_value if status == IssueStatus.CORRECTED else None
        self.db.commit()
        self.db.refresh(issue)

        logger.info("issue_resolved", issue_id=str(issue.id), resolution=status.value, field=issue.field_path)
        if self.audit is not None:
            self.audit.record(
                org_id, actor_id, "issue.resolved",
                target=issue.field_path,
                metadata={"issue_id": str(issue.id), "deal_id": str(issue.deal_id), "resolution": status.value},
            )
        return issue

    def update_deal(self, deal_id, org_id, patch: Dict[str, Any], actor_id=None) -> Deal:
        """
        Edit intake fields of a deal that is not being processed.

        Raises:
            EntityNotEditableError: the deal is past the editable statuses.
            ValidationError: unknown fields or invalid values.
        """
        deal = self.store.get_deal(deal_id, org_id)
        if deal.status not in EDITABLE_STATUSES:
            raise EntityNotEditableError(str(deal.id), deal.status.value)

        unknown = sorted(set(patch) - EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(
                "Deal fields cannot be edited",
                errors=[{"field": name, "message": "Not editable"} for name in unknown],
            )
        patch = dict(patch)
        if "loan_amount" in patch and (patch["loan_amount"] is None or patch["loan_amount"] <= 0):
            raise ValidationError(
                "Loan amount must be positive",
                errors=[{"field": "loan_amount", "message": "Must be greater than zero"}],
            )
        if patch.get("loan_program") is not None and get_loan_program(patch["loan_program"]) is None:
            raise ValidationError(
                f"Unknown loan program: {patch['loan_program']}",
                errors=[{"field": "loan_program", "message": "Unknown loan program"}],
            )
        if patch.get("property_state") is not None:
            patch["property_state"] = patch["property_state"].strip().upper()
            if get_state_rule(patch["property_state"]) is None:
                raise ValidationError(
                    f"Unknown state: {patch['property_state']}",
                    errors=[{"field": "property_state", "message": "Unknown state code"}],
                )

        deal = self.store.update(deal.id, patch)
        logger.info("deal_updated", deal_id=str(deal.id), fields=sorted(patch))
        self._audit(deal, actor_id, "deal.updated", fields=sorted(patch))
        return deal

    def create_deal(self, org_id, fields: Dict[str, Any], actor_id=None) -> Deal:
        """Open a deal in CREATED."""
        fields = dict(fields)
        if fields.get("loan_program") is not None and get_loan_program(fields["loan_program"]) is None:
            raise ValidationError(
                f"Unknown loan program: {fields['loan_program']}",
                errors=[{"field": "loan_program", "message": "Unknown loan program"}],
            )
        if fields.get("property_state"):
            fields["property_state"] = fields["property_state"].strip().upper()
        deal = Deal(organization_id=org_id, status=DealStatus.CREATED, **fields)
        self.db.add(deal)
        self.db.commit()
        self.db.refresh(deal)
        logger.info("deal_created", deal_id=str(deal.id), org_id=str(org_id), program=deal.loan_program)
        self._audit(deal, actor_id, "deal.created")
        return deal

    def attach_document(
        self,
        deal_id,
        org_id,
        file_name: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        actor_id=None,
    ) -> SourceDocument:
        """
        Store an uploaded source file and attach it to a deal.

        Raises:
            EntityNotEditableError: the deal has started processing.
            ValidationError: the file is empty.
        """
        deal = self.store.get_deal(deal_id, org_id)
        if deal.status not in (DealStatus.CREATED, DealStatus.UPLOADED):
            raise EntityNotEditableError(str(deal.id), deal.status.value)
        if not data:
            raise ValidationError("Uploaded file is empty", errors=[{"field": "file", "message": "Empty file"}])

        file_name = os.path.basename(file_name or "") or "upload"
        doc = SourceDocument(deal_id=deal.id, file_name=file_name, storage_key="")
        self.db.add(doc)
        self.db.flush()
        doc.storage_key = f"{deal.organization_id}/{deal.id}/source/{doc.id}-{file_name}"
        self.storage.put(doc.storage_key, data, content_type)

        if deal.status == DealStatus.CREATED:
            transition(deal, DealStatus.UPLOADED)
        self.db.commit()
        self.db.refresh(doc)
        logger.info("source_document_attached", deal_id=str(deal.id), doc_id=str(doc.id), size=len(data))
        self._audit(deal, actor_id, "document.uploaded", file_name=file_name)
        return doc

    def soft_delete_deal(self, deal_id, org_id, actor_id=None) -> Deal:
        """
        Tombstone a deal. Lookups ignore it afterwards.

        Raises:
            PipelineBusyError: the deal is being processed.
        """
        deal = self.store.get_deal(deal_id, org_id)
        if deal.status in PROCESSING_STATUSES:
            raise PipelineBusyError(str(deal.id), deal.status.value)
        deal = self.store.update(deal.id, {"deleted_at": _now()})
        logger.info("deal_deleted", deal_id=str(deal.id))
        self._audit(deal, actor_id, "deal.deleted")
        return deal

    # ------------------------------------------------------------------
    # Stage runner
    # ------------------------------------------------------------------

    def _run_from(self, deal: Deal, start: str) -> Deal:
        step = start
        try:
            for name, status in STAGES[STAGE_NAMES.index(start):]:
                step = name
                if deal.status != status:
                    transition(deal, status)
                deal.last_step = name
                deal.claimed_at = _now()
                self.db.commit()
                bind_deal_context(deal.id, deal.organization_id, step=name)

                pause = getattr(self, f"_stage_{name}")(deal)
                self.db.commit()
                if pause is not None:
                    transition(deal, pause)
                    deal.claim_token = None
                    self.db.commit()
                    logger.info("pipeline_paused", deal_id=str(deal.id), step=name, status=pause.value)
                    return deal

            transition(deal, DealStatus.COMPLETE)
            deal.error_step = None
            deal.error_message = None
            deal.claim_token = None
            self.db.commit()
        except Exception as e:
            self._fail(deal, step, e)

        logger.info("pipeline_complete", deal_id=str(deal.id))
        return deal

    def _fail(self, deal: Deal, step: str, error: Exception) -> None:
        self.db.rollback()
        deal.error_step = step
        deal.error_message = str(error)[:2000]
        deal.claim_token = None
        transition(deal, DealStatus.ERROR)
        self.db.commit()
        logger.error(
            "pipeline_stage_failed",
            deal_id=str(deal.id),
            step=step,
            error=str(error),
            error_type=type(error).__name__,
        )
        raise UnrecoverablePipelineError(step, str(error)) from error

    def _audit(self, deal: Deal, actor_id, action: str, **metadata) -> None:
        if self.audit is None:
            return
        self.audit.record(
            deal.organization_id, actor_id, action,
            target=str(deal.id),
            metadata=metadata or None,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _documents(deal: Deal) -> List[SourceDocument]:
        return [d for d in deal.documents if d.deleted_at is None]

    @staticmethod
    def _ocr_for(doc: SourceDocument) -> OCRResult:
        return OCRResult.from_dict(doc.textract_extraction or {})

    def _verification_inputs(self, deal: Deal) -> List[VerificationInput]:
        return [
            VerificationInput(
                document_id=str(doc.id),
                doc_type=doc.doc_type,
                data=doc.structured_data,
                key_values=self._ocr_for(doc).key_values,
                disagreements=(doc.reconciliation or {}).get("disagreements") or (),
            )
            for doc in self._documents(deal)
            if doc.structured_data
        ]

    def _resolved_keys(self, deal: Deal) -> Set[IssueKey]:
        return {
            (str(issue.source_document_id) if issue.source_document_id else None, issue.field_path)
            for issue in self.store.list_issues(deal.id)
            if issue.status in RESOLUTION_STATUSES
        }

    def _apply_corrections(self, deal: Deal) -> int:
        """Write CORRECTED issue values into the extracted data. Idempotent."""
        docs = {str(d.id): d for d in self._documents(deal)}
        applied = 0
        for issue in self.store.list_issues(deal.id, IssueStatus.CORRECTED):
            doc = docs.get(str(issue.source_document_id)) if issue.source_document_id else None
            if doc is None or issue.check_type == IssueCheckType.CROSS_DOC:
                logger.warning("correction_not_applied", issue_id=str(issue.id), field=issue.field_path)
                continue
            data = copy.deepcopy(doc.structured_data or {})
            set_path(data, issue.field_path, issue.corrected_value)
            doc.structured_data = data
            applied += 1
        return applied

    def _proposed_payment(self, deal: Deal) -> float:
        program = get_loan_program(deal.loan_program)
        if program is None:
            return 0.0
        rules = program.structuring
        rate = BASE_RATES[rules.base_rate] + sum(rules.spread_range) / 2
        amortization = 0 if rules.interest_only else rules.max_amortization
        return calculate_monthly_payment(deal.loan_amount, rate, amortization, rules.interest_only)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _stage_ocr(self, deal: Deal) -> Optional[DealStatus]:
        docs = self._documents(deal)
        if not docs:
            raise ValidationError("Deal has no source documents")
        for doc in docs:
            result = self.ocr.extract(self.storage.get(doc.storage_key), doc.file_name)
            doc.ocr_text = result.raw_text
            doc.textract_extraction = result.to_dict()
        return None

    def _stage_classify(self, deal: Deal) -> Optional[DealStatus]:
        for doc in self._documents(deal):
            ocr = self._ocr_for(doc)
            result = classify_with_fallback(ocr.raw_text, [kv.key for kv in ocr.key_values], llm=self.llm)
            doc.doc_type = result.doc_type
            doc.classification_confidence = result.score
            logger.info(
                "document_classified",
                doc_id=str(doc.id),
                doc_type=result.doc_type,
                confidence=result.confidence,
                method=result.method,
            )
        return None

    def _stage_extract(self, deal: Deal) -> Optional[DealStatus]:
        for doc in self._documents(deal):
            if not doc.doc_type:
                logger.warning("extraction_skipped_unclassified", doc_id=str(doc.id), file_name=doc.file_name)
                continue
            ocr = self._ocr_for(doc)
            primary = map_key_values(doc.doc_type, ocr.key_values)
            secondary: Dict[str, Any] = {}
            if self.llm is not None:
                extraction = AIExtractor(self.llm).extract(doc.doc_type, ocr)
                secondary = extraction.structured_data
                if extraction.validation_errors:
                    logger.warning(
                        "extraction_schema_errors",
                        doc_id=str(doc.id),
                        count=len(extraction.validation_errors),
                    )

            result = reconcile_extractions(primary, secondary)
            doc.textract_extraction = dict(doc.textract_extraction or {}, fields=primary)
            doc.ai_extraction = secondary
            doc.structured_data = result.merged
            doc.reconciliation = result.to_dict()
            logger.info(
                "document_extracted",
                doc_id=str(doc.id),
                doc_type=doc.doc_type,
                fields=len(result.fields),
                disagreements=len(result.disagreements),
            )
        return None

    def _stage_verify(self, deal: Deal) -> Optional[DealStatus]:
        applied = self._apply_corrections(deal)
        report, _ = verify_deal(self._verification_inputs(deal))
        deal.verification_report = report.to_dict()
        if applied:
            logger.info("corrections_applied", deal_id=str(deal.id), count=applied)
        return None

    def _stage_resolve(self, deal: Deal) -> Optional[DealStatus]:
        docs = {str(d.id): d for d in self._documents(deal)}
        resolved_keys = self._resolved_keys(deal)
        report, _ = verify_deal(self._verification_inputs(deal))

        resolutions: List[Dict[str, Any]] = []
        for document_id, discrepancies in collect_discrepancies(report).items():
            doc = docs.get(document_id)
            if doc is None:
                continue
            open_items = [d for d in discrepancies if (document_id, d.field_path) not in resolved_keys]
            if not open_items:
                continue
            outcome = resolve_discrepancies(open_items, self._ocr_for(doc), llm=self.llm)
            if not outcome.resolved:
                continue
            data = copy.deepcopy(doc.structured_data or {})
            for resolution in outcome.resolved:
                if resolution.resolved_value is not None:
                    set_path(data, resolution.discrepancy.field_path, resolution.resolved_value)
                resolutions.append(dict(resolution.to_dict(), document_id=document_id))
            doc.structured_data = data

        if resolutions:
            report, _ = verify_deal(self._verification_inputs(deal))
        deal.verification_report = dict(report.to_dict(), self_resolved=resolutions)
        logger.info("self_resolution_complete", deal_id=str(deal.id), resolved=len(resolutions))
        return None

    def _stage_gate(self, deal: Deal) -> Optional[DealStatus]:
        docs = {str(d.id) for d in self._documents(deal)}
        resolved_keys = self._resolved_keys(deal)
        _, gate = verify_deal(self._verification_inputs(deal))
        items = [i for i in gate.review_items if (i.document_id, i.field_path) not in resolved_keys]

        self.db.query(VerificationIssue).filter(
            VerificationIssue.deal_id == deal.id,
            VerificationIssue.status == IssueStatus.PENDING,
        ).delete(synchronize_session=False)
        for item in items:
            self.db.add(VerificationIssue(
                deal_id=deal.id,
                source_document_id=item.document_id if item.document_id in docs else None,
                check_type=item.check_type,
                field_path=item.field_path,
                description=item.description,
                expected=item.expected_value,
                actual=item.extracted_value,
                difference=item.difference,
                severity=item.severity,
                status=IssueStatus.PENDING,
            ))

        logger.info(
            "review_gate_evaluated",
            deal_id=str(deal.id),
            review_items=len(items),
            auto_passed=gate.auto_passed_count,
            previously_resolved=len(gate.review_items) - len(items),
        )
        return DealStatus.NEEDS_REVIEW if items else None

    def _stage_analyze(self, deal: Deal) -> Optional[DealStatus]:
        docs = [
            DocumentExtraction(doc_type=doc.doc_type, data=doc.structured_data, document_id=str(doc.id))
            for doc in self._documents(deal)
            if doc.doc_type and doc.structured_data
        ]
        result = analyze_deal(docs, proposed_monthly_payment=self._proposed_payment(deal))
        deal.analysis = result.to_dict()
        return None

    def _stage_structure(self, deal: Deal) -> Optional[DealStatus]:
        if not deal.loan_program:
            raise ValidationError(
                "Deal has no loan program",
                errors=[{"field": "loan_program", "message": "Required before structuring"}],
            )
        summary = (deal.analysis or {}).get("summary") or {}
        inputs = RulesInput(
            requested_amount=deal.loan_amount,
            global_dscr=summary.get("global_dscr"),
            back_end_dti=summary.get("back_end_dti"),
            risk_rating=summary.get("risk_rating"),
            months_of_reserves=summary.get("months_of_reserves") or 0.0,
            qualifying_income=summary.get("qualifying_income"),
            property_value=deal.property_value,
            collateral_value=deal.property_value,
            requested_term_months=deal.requested_term_months,
            is_commercial=deal.is_commercial,
        )
        terms = run_rules_engine(inputs, deal.loan_program, deal.property_state)
        review = review_deal_compliance(deal, terms)
        deal.terms = terms.to_dict()
        deal.compliance_review = review.to_dict()
        return DealStatus.NEEDS_TERM_REVIEW if review.requires_term_review else None

    def _stage_generate_docs(self, deal: Deal) -> Optional[DealStatus]:
        if not deal.terms:
            raise ValidationError("Deal has no structured terms")
        self.generator.generate_all(self.db, self.storage, deal, RulesEngineResult.from_dict(deal.terms))
        return None

    def _stage_generate_memo(self, deal: Deal) -> Optional[DealStatus]:
        CreditMemoService(self.db, self.storage).generate(deal)
        return None
