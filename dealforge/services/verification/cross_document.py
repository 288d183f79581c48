"""
Cross-document consistency checks.

Compares values that two different document classes in the same deal
should agree on. A check passes within $1 or its fail threshold, warns
within its warning threshold, and fails beyond it.
"""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from dealforge.services.extraction.classifier import normalize_doc_type
from dealforge.services.verification.math_checks import as_list, num

ABSOLUTE_TOLERANCE = 1.0
PERCENT_TOLERANCE = 0.02
WARNING_THRESHOLD = 0.05
LOOSE_FAIL_THRESHOLD = 0.20
HARD_FAIL_THRESHOLD = 0.50

CHECK_PASS = "PASS"
CHECK_WARNING = "WARNING"
CHECK_FAIL = "FAIL"


@dataclass
class DocumentExtraction:
    """Verified payload of one source document."""
    doc_type: str
    data: Dict[str, Any]
    year: Optional[int] = None
    document_id: Optional[str] = None


@dataclass
class CrossDocCheck:
    description: str
    doc1_type: str
    doc1_field: str
    doc1_value: float
    doc2_type: str
    doc2_field: str
    doc2_value: float
    difference: float
    percent_diff: float
    status: str

    @property
    def passed(self) -> bool:
        return self.status == CHECK_PASS

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def percent_diff(a: float, b: float) -> float:
    largest = max(abs(a), abs(b))
    if largest == 0:
        return 0.0
    return abs(a - b) / largest


def build_check(
    description: str,
    doc1_type: str,
    doc1_field: str,
    doc1_value: float,
    doc2_type: str,
    doc2_field: str,
    doc2_value: float,
    fail_threshold: float = PERCENT_TOLERANCE,
    warn_threshold: float = WARNING_THRESHOLD,
) -> CrossDocCheck:
    difference = round(abs(doc1_value - doc2_value), 2)
    pct = round(percent_diff(doc1_value, doc2_value), 2)
    if difference <= ABSOLUTE_TOLERANCE or pct <= fail_threshold:
        status = CHECK_PASS
    elif pct <= warn_threshold:
        status = CHECK_WARNING
    else:
        status = CHECK_FAIL
    return CrossDocCheck(
        description=description,
        doc1_type=doc1_type,
        doc1_field=doc1_field,
        doc1_value=round(doc1_value, 2),
        doc2_type=doc2_type,
        doc2_field=doc2_field,
        doc2_value=round(doc2_value, 2),
        difference=difference,
        percent_diff=pct,
        status=status,
    )


def find_by_type(docs: Sequence[DocumentExtraction], *doc_types: str) -> List[DocumentExtraction]:
    return [d for d in docs if normalize_doc_type(d.doc_type) in doc_types]


def find_first(docs: Sequence[DocumentExtraction], *doc_types: str) -> Optional[DocumentExtraction]:
    found = find_by_type(docs, *doc_types)
    return found[0] if found else None


def first_num(obj: Any, *paths: str) -> float:
    """First non-zero value among the given paths."""
    for path in paths:
        value = num(obj, path)
        if value:
            return value
    return 0.0


def _w2_total(w2s: Sequence[DocumentExtraction]) -> float:
    return sum(first_num(w2.data, "wagesTips", "box1", "wages") for w2 in w2s)


BANK_TYPES = ("BANK_STATEMENT_CHECKING", "BANK_STATEMENT_SAVINGS")


# =============================================================================
# Checks
# =============================================================================

def check_w2_vs_1040(docs: Sequence[DocumentExtraction]) -> List[CrossDocCheck]:
    form_1040 = find_first(docs, "FORM_1040")
    w2s = find_by_type(docs, "W2")
    if form_1040 is None or not w2s:
        return []

    w2_total = _w2_total(w2s)
    line1 = first_num(form_1040.data, "income.wages_line1", "wages_line1")
    if w2_total > 0 and line1 > 0:
        return [build_check(
            "Sum of W-2 wages (box 1) should match 1040 Line 1 wages",
            "W2", "wagesTips (sum)", w2_total,
            "FORM_1040", "income.wages_line1", line1,
        )]
    return []


def check_schedule_c_vs_pnl(docs: Sequence[DocumentExtraction]) -> List[CrossDocCheck]:
    form_1040 = find_first(docs, "FORM_1040")
    pnl_doc = find_first(docs, "PROFIT_AND_LOSS")
    if form_1040 is None or pnl_doc is None:
        return []
    schedule_cs = as_list(form_1040.data.get("scheduleC"))
    if not schedule_cs:
        return []

    # Single-business case: first Schedule C against first P&L
    sc, pnl = schedule_cs[0], pnl_doc.data
    checks: List[CrossDocCheck] = []

    gross_receipts = first_num(sc, "grossReceipts_line1", "grossReceipts")
    revenue = first_num(pnl, "netRevenue", "totalRevenue", "revenue")
    if gross_receipts > 0 and revenue > 0:
        checks.append(build_check(
            "Schedule C gross receipts should match P&L revenue (same business)",
            "FORM_1040 (Schedule C)", "scheduleC.grossReceipts", gross_receipts,
            "PROFIT_AND_LOSS", "netRevenue", revenue,
            WARNING_THRESHOLD, 0.10,
        ))

    net_profit = first_num(sc, "netProfit_line31", "netProfit")
    net_income = num(pnl, "netIncome")
    if net_profit != 0 and net_income != 0:
        checks.append(build_check(
            "Schedule C net profit should be close to P&L net income",
            "FORM_1040 (Schedule C)", "scheduleC.netProfit", net_profit,
            "PROFIT_AND_LOSS", "netIncome", net_income,
            WARNING_THRESHOLD, 0.10,
        ))
    return checks


def check_bank_deposits_vs_income(docs: Sequence[DocumentExtraction]) -> List[CrossDocCheck]:
    form_1040 = find_first(docs, "FORM_1040")
    statements = find_by_type(docs, *BANK_TYPES)
    if form_1040 is None or not statements:
        return []

    total_deposits = sum(first_num(s.data, "summary.totalDeposits", "totalDeposits") for s in statements)
    months = len(statements)
    if total_deposits == 0:
        return []
    annualized = round(total_deposits / months * 12, 2)

    total_income = first_num(form_1040.data, "income.totalIncome_line9", "totalIncome_line9")
    if total_income > 0:
        return [build_check(
            f"Annualized bank deposits ({months} months extrapolated to 12) "
            f"should be in ballpark of 1040 total income",
            "BANK_STATEMENT", "annualizedDeposits", annualized,
            "FORM_1040", "income.totalIncome_line9", total_income,
            LOOSE_FAIL_THRESHOLD, HARD_FAIL_THRESHOLD,
        )]
    return []


def check_schedule_e_vs_rent_roll(docs: Sequence[DocumentExtraction]) -> List[CrossDocCheck]:
    form_1040 = find_first(docs, "FORM_1040")
    rent_roll = find_first(docs, "RENT_ROLL")
    if form_1040 is None or rent_roll is None:
        return []
    schedule_es = as_list(form_1040.data.get("scheduleE"))
    if not schedule_es:
        return []

    properties = schedule_es[0].get("properties", schedule_es)
    total_rents = sum(num(p, "rentsReceived") for p in properties if isinstance(p, dict)) \
        if isinstance(properties, list) else 0.0
    annual_rent = first_num(rent_roll.data, "summary.totalAnnualRent", "totalAnnualRent")
    if total_rents > 0 and annual_rent > 0:
        return [build_check(
            "Schedule E total rents received should match Rent Roll total annual rent",
            "FORM_1040 (Schedule E)", "scheduleE.rentsReceived", total_rents,
            "RENT_ROLL", "summary.totalAnnualRent", annual_rent,
            WARNING_THRESHOLD, 0.10,
        )]
    return []


def check_1120s_officer_comp_vs_w2(docs: Sequence[DocumentExtraction]) -> List[CrossDocCheck]:
    form_1120s = find_first(docs, "FORM_1120S")
    w2s = find_by_type(docs, "W2")
    if form_1120s is None or not w2s:
        return []

    officer_comp = first_num(
        form_1120s.data,
        "deductions.compensationOfOfficers_line7",
        "officerCompensation_line7",
        "deductions.officerCompensation_line7",
        "officerCompensation",
    )
    w2_total = _w2_total(w2s)
    if officer_comp > 0 and w2_total > 0:
        return [build_check(
            "1120S officer compensation (line 7) should match total W-2 wages for that entity",
            "FORM_1120S", "officerCompensation_line7", officer_comp,
            "W2", "wagesTips (sum)", w2_total,
        )]
    return []


def check_k1_vs_schedule_e(docs: Sequence[DocumentExtraction]) -> List[CrossDocCheck]:
    k1s = find_by_type(docs, "SCHEDULE_K1")
    form_1040 = find_first(docs, "FORM_1040")
    if not k1s or form_1040 is None:
        return []

    k1_income = sum(first_num(k1.data, "ordinaryIncome", "ordinaryBusinessIncome", "box1") for k1 in k1s)
    schedule_e = form_1040.data.get("scheduleE")
    if not isinstance(schedule_e, dict):
        return []
    part_ii = schedule_e.get("partII") or schedule_e
    reported = first_num(part_ii, "totalPartnershipIncome", "totalSCorpIncome", "partnershipIncome")
    if k1_income != 0 and reported != 0:
        return [build_check(
            "K-1 ordinary income should match Schedule E Part II partnership/S-corp income",
            "SCHEDULE_K1", "ordinaryIncome (sum)", k1_income,
            "FORM_1040 (Schedule E)", "scheduleE.partII.totalPartnershipIncome", reported,
        )]
    return []


def check_balance_sheet_equity_vs_pnl(docs: Sequence[DocumentExtraction]) -> List[CrossDocCheck]:
    balance_sheet = find_first(docs, "BALANCE_SHEET")
    pnl = find_first(docs, "PROFIT_AND_LOSS")
    if balance_sheet is None or pnl is None:
        return []

    current = num(balance_sheet.data, "retainedEarnings")
    prior = num(balance_sheet.data, "priorRetainedEarnings")
    net_income = num(pnl.data, "netIncome")
    if current != 0 and prior != 0 and net_income != 0:
        return [build_check(
            "Retained earnings change on balance sheet should approximate P&L net income (same period)",
            "BALANCE_SHEET", "retainedEarnings (change)", current - prior,
            "PROFIT_AND_LOSS", "netIncome", net_income,
            WARNING_THRESHOLD, 0.15,
        )]
    return []


def _statement_period(data: Dict[str, Any]) -> Dict[str, Any]:
    summary = data.get("summary") if isinstance(data.get("summary"), dict) else {}
    period = data.get("statementPeriod") or data.get("period") or summary.get("period") or {}
    return period if isinstance(period, dict) else {}


def statement_sort_key(doc: DocumentExtraction) -> float:
    """Sortable date for a bank statement: its end date, else year and month."""
    period = _statement_period(doc.data)
    date_str = period.get("endDate") or period.get("end") or doc.data.get("endDate") \
        or doc.data.get("statementDate") or ""
    if date_str:
        try:
            return datetime.fromisoformat(str(date_str)[:10]).timestamp()
        except ValueError:
            pass
    year = doc.year or num(doc.data, "year")
    month = first_num(doc.data, "month", "summary.month")
    return year * 100 + month


def statement_label(doc: DocumentExtraction) -> str:
    period = _statement_period(doc.data)
    if period.get("startDate") and period.get("endDate"):
        return f"{period['startDate']} to {period['endDate']}"
    month = int(first_num(doc.data, "month", "summary.month"))
    year = int(doc.year or num(doc.data, "year"))
    if month and year:
        return f"{year}-{month:02d}"
    return "unknown period"


def check_bank_statement_chains(docs: Sequence[DocumentExtraction]) -> List[CrossDocCheck]:
    statements = sorted(find_by_type(docs, *BANK_TYPES), key=statement_sort_key)
    checks: List[CrossDocCheck] = []
    for current, following in zip(statements, statements[1:]):
        ending = first_num(current.data, "summary.endingBalance", "endingBalance")
        beginning = first_num(following.data, "summary.beginningBalance", "beginningBalance")
        if ending == 0 or beginning == 0:
            continue
        label, next_label = statement_label(current), statement_label(following)
        checks.append(build_check(
            f"Bank statement chain: {label} ending balance should equal {next_label} beginning balance",
            f"BANK_STATEMENT ({label})", "summary.endingBalance", ending,
            f"BANK_STATEMENT ({next_label})", "summary.beginningBalance", beginning,
            0, 0.001,
        ))
    return checks


CROSS_DOCUMENT_CHECKS = (
    check_w2_vs_1040,
    check_schedule_c_vs_pnl,
    check_bank_deposits_vs_income,
    check_schedule_e_vs_rent_roll,
    check_1120s_officer_comp_vs_w2,
    check_k1_vs_schedule_e,
    check_balance_sheet_equity_vs_pnl,
    check_bank_statement_chains,
)


def run_cross_document_checks(docs: Sequence[DocumentExtraction]) -> List[CrossDocCheck]:
    """Run every cross-document check over the documents that carry data."""
    valid = [d for d in docs or () if d.data]
    if not valid:
        return []
    checks: List[CrossDocCheck] = []
    for check in CROSS_DOCUMENT_CHECKS:
        checks.extend(check(valid))
    return checks
