"""
Credit memo generation.

The memo summarizes the verified financials, the structured terms and the
outstanding findings for the credit committee. Every figure comes from
the persisted stage outputs; nothing is drafted by the generative service.
"""
import hashlib
import json
from typing import Any, Dict, List, Optional

import structlog
from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt
from sqlalchemy import func
from sqlalchemy.orm import Session

from dealforge.exceptions import ValidationError
from dealforge.models.credit_memo import CreditMemo
from dealforge.services.documents.render import (
    DOCX_CONTENT_TYPE,
    add_grid_table,
    doc_title,
    format_money,
    format_rate,
    to_bytes,
)
from dealforge.services.rules.loan_programs import get_loan_program
from dealforge.services.storage import ObjectStorage

logger = structlog.get_logger(__name__)


def memo_key(org_id, deal_id, version: int) -> str:
    return f"{org_id}/{deal_id}/credit-memo-v{version}.docx"


def _ratio(value: Optional[float], suffix: str = "x") -> str:
    if value is None:
        return "N/A"
    return f"{value:.2f}{suffix}"


def _percent(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    return f"{value * 100:.1f}%"


def build_memo_sections(deal, documents: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Collect the memo content from a deal's stage outputs.

    Args:
        deal: Deal with analysis, terms and verification_report populated.
        documents: Generated document summaries (doc_type, status, compliance_status).

    Raises:
        ValidationError: the deal has not been analyzed and structured.
    """
    if not deal.analysis or not deal.terms:
        raise ValidationError("Credit memo requires analysis and structured terms")

    analysis = deal.analysis
    terms = deal.terms
    summary = analysis.get("summary") or {}
    income = analysis.get("income") or {}
    debt = analysis.get("debt") or {}
    liquidity = analysis.get("liquidity") or {}
    report = deal.verification_report or {}
    review = deal.compliance_review or {}
    program = get_loan_program(terms.get("program_id"))

    return {
        "request": {
            "borrower": deal.borrower_name,
            "amount": deal.loan_amount,
            "purpose": deal.loan_purpose or "Not stated",
            "program": program.name if program else terms.get("program_id"),
            "state": deal.property_state,
        },
        "financials": {
            "qualifying_income": summary.get("qualifying_income"),
            "income_trend": income.get("trend"),
            "global_dscr": summary.get("global_dscr"),
            "property_dscr": debt.get("property_dscr"),
            "back_end_dti": summary.get("back_end_dti"),
            "months_of_reserves": summary.get("months_of_reserves"),
            "total_liquid_assets": liquidity.get("total_liquid_assets"),
        },
        "risk": {
            "rating": analysis.get("risk_rating"),
            "score": analysis.get("risk_score"),
            "flags": analysis.get("risk_flags") or [],
        },
        "terms": {
            "approved_amount": terms.get("approved_amount"),
            "rate": (terms.get("rate") or {}).get("total_rate"),
            "term_months": terms.get("term_months"),
            "amortization_months": terms.get("amortization_months"),
            "monthly_payment": terms.get("monthly_payment"),
            "ltv": terms.get("ltv"),
            "projected_dscr": terms.get("projected_dscr"),
            "total_fees": terms.get("total_fees"),
        },
        "verification": {
            "overall_status": report.get("overall_status"),
            "summary": report.get("summary") or {},
        },
        "compliance": {
            "status": review.get("status"),
            "decline_reasons": review.get("decline_reasons") or [],
        },
        "documents": documents,
    }


def render_memo(sections: Dict[str, Any]) -> bytes:
    document = Document()
    style = document.styles["Normal"]
    style.font.name = "Times New Roman"
    style.font.size = Pt(11)

    title = document.add_heading("Credit Memorandum", level=0)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER

    request = sections["request"]
    document.add_heading("Loan Request", level=1)
    add_grid_table(document, ["Item", "Value"], [
        ["Borrower", request["borrower"]],
        ["Requested Amount", format_money(request["amount"])],
        ["Purpose", request["purpose"]],
        ["Program", str(request["program"])],
        ["Property State", request["state"] or "N/A"],
    ])

    fin = sections["financials"]
    document.add_heading("Financial Analysis", level=1)
    add_grid_table(document, ["Measure", "Value"], [
        ["Qualifying Income", format_money(fin["qualifying_income"] or 0.0)],
        ["Income Trend", fin["income_trend"] or "N/A"],
        ["Global DSCR", _ratio(fin["global_dscr"])],
        ["Property DSCR", _ratio(fin["property_dscr"])],
        ["Back-End DTI", _percent(fin["back_end_dti"])],
        ["Months of Reserves", f"{fin['months_of_reserves'] or 0.0:.1f}"],
        ["Liquid Assets", format_money(fin["total_liquid_assets"] or 0.0)],
    ])

    terms = sections["terms"]
    document.add_heading("Proposed Terms", level=1)
    add_grid_table(document, ["Term", "Value"], [
        ["Approved Amount", format_money(terms["approved_amount"] or 0.0)],
        ["Interest Rate", format_rate(terms["rate"] or 0.0)],
        ["Term", f"{terms['term_months']} months"],
        ["Amortization", f"{terms['amortization_months']} months" if terms["amortization_months"] else "Interest only"],
        ["Monthly Payment", format_money(terms["monthly_payment"] or 0.0)],
        ["Loan-to-Value", _percent(terms["ltv"])],
        ["Projected DSCR", _ratio(terms["projected_dscr"])],
        ["Total Fees", format_money(terms["total_fees"] or 0.0)],
    ])

    risk = sections["risk"]
    document.add_heading("Risk Assessment", level=1)
    document.add_paragraph(f"Risk rating: {risk['rating'] or 'N/A'} (score {risk['score'] or 0})")
    for flag in risk["flags"]:
        document.add_paragraph(
            f"[{flag.get('severity', '').upper()}] {flag.get('title', '')}: {flag.get('description', '')}",
            style="List Bullet",
        )

    verification = sections["verification"]
    document.add_heading("Verification", level=1)
    document.add_paragraph(f"Overall status: {verification['overall_status'] or 'N/A'}")
    for key, value in sorted(verification["summary"].items()):
        document.add_paragraph(f"{key.replace('_', ' ').capitalize()}: {value}", style="List Bullet")

    compliance = sections["compliance"]
    document.add_heading("Compliance", level=1)
    document.add_paragraph(f"Term review status: {compliance['status'] or 'N/A'}")
    for reason in compliance["decline_reasons"]:
        document.add_paragraph(reason, style="List Bullet")

    if sections["documents"]:
        document.add_heading("Loan Documents", level=1)
        add_grid_table(document, ["Document", "Status", "Compliance"], [
            [doc_title(d["doc_type"]), d["status"], d["compliance_status"] or "N/A"]
            for d in sections["documents"]
        ])

    return to_bytes(document)


def memo_fingerprint(deal) -> str:
    """Stable digest of the stage outputs a memo is rendered from."""
    payload = json.dumps({"terms": deal.terms, "analysis": deal.analysis}, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class CreditMemoService:
    """Renders and stores credit memo versions."""

    def __init__(self, db: Session, storage: ObjectStorage):
        self.db = db
        self.storage = storage

    def next_version(self, deal_id) -> int:
        current = self.db.query(func.max(CreditMemo.version)).filter(CreditMemo.deal_id == deal_id).scalar()
        return (current or 0) + 1

    def get(self, deal_id, version: Optional[int] = None) -> Optional[CreditMemo]:
        """The given memo version, or the latest one when version is None."""
        query = self.db.query(CreditMemo).filter(CreditMemo.deal_id == deal_id)
        if version is not None:
            return query.filter(CreditMemo.version == version).first()
        return query.order_by(CreditMemo.version.desc()).first()

    def generate(self, deal) -> CreditMemo:
        """
        Render and store a memo for the deal's current terms.

        A memo already rendered from the same terms and analysis is
        returned as is, so a restarted run does not add a duplicate version.
        """
        fingerprint = memo_fingerprint(deal)
        current = self.get(deal.id)
        if current is not None and current.inputs_fingerprint == fingerprint:
            logger.info("credit_memo_current", deal_id=str(deal.id), version=current.version)
            return current

        documents = [
            {
                "doc_type": d.doc_type,
                "status": d.status.value,
                "compliance_status": d.compliance_status.value if d.compliance_status else None,
            }
            for d in deal.generated_documents
        ]
        sections = build_memo_sections(deal, documents)
        content = render_memo(sections)

        version = self.next_version(deal.id)
        key = memo_key(deal.organization_id, deal.id, version)
        self.storage.put(key, content, DOCX_CONTENT_TYPE)

        memo = CreditMemo(
            deal_id=deal.id,
            version=version,
            storage_key=key,
            sections=sections,
            inputs_fingerprint=fingerprint,
        )
        self.db.add(memo)
        self.db.commit()
        self.db.refresh(memo)

        logger.info("credit_memo_generated", deal_id=str(deal.id), version=version, key=key)
        return memo
