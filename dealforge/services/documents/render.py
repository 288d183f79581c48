"""
DOCX rendering for generated loan documents.

Numbers are written from the structured terms by this module; prose
sections are inserted as drafted. Verification reads the rendered text
back through document_text().
"""
from io import BytesIO
import re
from typing import Any, Dict, List, Optional

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt

from dealforge.services.rules.loan_programs import get_loan_program
from dealforge.services.rules.rules_engine import RulesEngineResult

DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

DOC_TITLES: Dict[str, str] = {
    "promissory_note": "Promissory Note",
    "loan_agreement": "Loan Agreement",
    "security_agreement": "Security Agreement",
    "guaranty": "Unconditional Guaranty",
    "commitment_letter": "Commitment Letter",
    "environmental_indemnity": "Environmental Indemnity Agreement",
    "corporate_resolution": "Corporate Resolution to Borrow",
    "ucc_financing_statement": "UCC Financing Statement",
    "borrowers_certificate": "Borrower's Certificate",
    "opinion_letter": "Opinion of Borrower's Counsel",
    "deed_of_trust": "Deed of Trust",
    "sba_authorization": "SBA Loan Authorization",
    "borrowing_base_agreement": "Borrowing Base Agreement",
    "settlement_statement": "Settlement Statement",
    "compliance_certificate": "Compliance Certificate",
    "amortization_schedule": "Amortization Schedule",
    "irs_4506c": "IRS Form 4506-C",
    "irs_w9": "IRS Form W-9",
}

COVENANT_DOCS = frozenset({"loan_agreement", "commitment_letter", "compliance_certificate"})
CONDITION_DOCS = frozenset({"loan_agreement", "commitment_letter"})
SCHEDULE_ROWS = 12

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def format_money(value: float) -> str:
    return f"${value:,.2f}"


def format_rate(rate: float) -> str:
    return f"{rate * 100:.3f}%"


def format_threshold(threshold: float) -> str:
    return f"{threshold:.2f}x" if threshold >= 1 else f"{threshold * 100:.1f}%"


def doc_title(doc_type: str) -> str:
    return DOC_TITLES.get(doc_type, doc_type.replace("_", " ").title())


def humanize_key(key: str) -> str:
    return _CAMEL_RE.sub(" ", key).title()


def add_grid_table(document, header: List[str], rows: List[List[str]]):
    table = document.add_table(rows=1, cols=len(header))
    table.style = "Table Grid"
    for cell, text in zip(table.rows[0].cells, header):
        cell.text = text
        for paragraph in cell.paragraphs:
            for run in paragraph.runs:
                run.bold = True
    for values in rows:
        cells = table.add_row().cells
        for cell, text in zip(cells, values):
            cell.text = text
    return table


def _terms_rows(terms: RulesEngineResult) -> List[List[str]]:
    rate = terms.rate
    rows = [
        ["Principal Amount", format_money(terms.approved_amount)],
        ["Interest Rate", format_rate(rate.total_rate)],
        ["Rate Index", f"{rate.base_rate_type.upper()} {format_rate(rate.base_rate_value)} + {format_rate(rate.spread)}"],
        ["Term", f"{terms.term_months} months"],
        ["Amortization", "Interest only" if terms.interest_only else f"{terms.amortization_months} months"],
        ["Monthly Payment", format_money(terms.monthly_payment)],
        ["Late Fee", f"{terms.late_fee_percent * 100:.1f}% after {terms.late_fee_grace_days} days"],
        ["Prepayment Penalty", "Yes" if terms.prepayment_penalty else "No"],
    ]
    if terms.ltv is not None:
        rows.append(["Loan-to-Value", f"{terms.ltv * 100:.1f}%"])
    return rows


def amortization_rows(terms: RulesEngineResult, count: int = SCHEDULE_ROWS) -> List[List[str]]:
    balance = terms.approved_amount
    monthly_rate = terms.rate.total_rate / 12
    rows = []
    for period in range(1, min(count, terms.term_months) + 1):
        interest = round(balance * monthly_rate, 2)
        principal = 0.0 if terms.interest_only else round(terms.monthly_payment - interest, 2)
        balance = round(balance - principal, 2)
        rows.append([str(period), format_money(terms.monthly_payment), format_money(interest),
                     format_money(principal), format_money(max(balance, 0.0))])
    return rows


def build_document(doc_type: str, deal, terms: RulesEngineResult, prose: Optional[Dict[str, Any]] = None):
    """Assemble the python-docx Document for one generated document."""
    prose = prose or {}
    program = get_loan_program(terms.program_id)
    document = Document()
    style = document.styles["Normal"]
    style.font.name = "Times New Roman"
    style.font.size = Pt(11)

    title = document.add_heading(doc_title(doc_type), level=0)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER

    parties = document.add_paragraph()
    run = parties.add_run("Borrower: ")
    run.bold = True
    parties.add_run(deal.borrower_name)
    if program is not None:
        document.add_paragraph(f"Loan Program: {program.name}")
    if terms.state:
        document.add_paragraph(f"Governing State: {terms.state}")

    document.add_heading("Loan Terms", level=1)
    add_grid_table(document, ["Term", "Value"], _terms_rows(terms))

    if terms.fees:
        document.add_heading("Fees", level=1)
        add_grid_table(
            document, ["Fee", "Amount", "Description"],
            [[f.name, format_money(f.amount), f.description] for f in terms.fees],
        )
        document.add_paragraph(f"Total Fees: {format_money(terms.total_fees)}")

    if doc_type in COVENANT_DOCS and terms.covenants:
        document.add_heading("Covenants", level=1)
        for covenant in terms.covenants:
            text = f"{covenant['name']}: {covenant['description']}"
            if covenant.get("threshold") is not None:
                text += f" Threshold: {format_threshold(covenant['threshold'])}."
            document.add_paragraph(text, style="List Bullet")

    if doc_type in CONDITION_DOCS and terms.conditions:
        document.add_heading("Conditions", level=1)
        for condition in terms.conditions:
            label = condition.category.replace("_", " ").title()
            document.add_paragraph(f"{label}: {condition.description}", style="List Bullet")

    if doc_type == "amortization_schedule":
        document.add_heading(f"Payment Schedule (first {SCHEDULE_ROWS} payments)", level=1)
        add_grid_table(document, ["Payment", "Amount", "Interest", "Principal", "Balance"], amortization_rows(terms))

    for key, value in prose.items():
        document.add_heading(humanize_key(key), level=1)
        if isinstance(value, list):
            for item in value:
                document.add_paragraph(str(item), style="List Bullet")
        else:
            for block in str(value).split("\n\n"):
                if block.strip():
                    document.add_paragraph(block.strip())

    document.add_heading("Signatures", level=1)
    document.add_paragraph(f"BORROWER: {deal.borrower_name}")
    document.add_paragraph("By: ______________________________")
    document.add_paragraph("Name / Title: ____________________")
    document.add_paragraph("Date: ___________________________")
    return document


def document_text(document) -> str:
    """Plain text of every paragraph and table cell, in order."""
    parts = [p.text for p in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            parts.extend(cell.text for cell in row.cells)
    return "\n".join(parts)


def to_bytes(document) -> bytes:
    buffer = BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def render_docx(doc_type: str, deal, terms: RulesEngineResult, prose: Optional[Dict[str, Any]] = None) -> bytes:
    return to_bytes(build_document(doc_type, deal, terms, prose))
