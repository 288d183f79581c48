"""
Financial analysis of verified extractions.

Deterministic underwriting math: qualifying income, DSCR, DTI, liquidity
and risk flags rolled up into a risk rating. Runs only on data that
passed verification or human review.
"""
import re
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from dealforge.services.extraction.classifier import normalize_doc_type
from dealforge.services.verification.cross_document import BANK_TYPES, DocumentExtraction
from dealforge.services.verification.math_checks import as_list, num

logger = structlog.get_logger(__name__)

UNBOUNDED_RESERVES = 999.0

DEBT_PATTERN = re.compile(
    r"\b(mortgage|loan|auto pay|car pay|student|credit card|min payment|capital one|chase|discover|"
    r"amex|wells fargo|sallie mae|navient|sofi|lending club)\b",
    re.IGNORECASE,
)
HOUSING_PATTERN = re.compile(r"\b(mortgage|rent|hoa|property tax|home insurance|escrow)\b", re.IGNORECASE)

MONTHLY_FACTORS = {
    "weekly": 52 / 12,
    "biweekly": 26 / 12,
    "bi-weekly": 26 / 12,
    "semimonthly": 2.0,
    "quarterly": 1 / 3,
    "annual": 1 / 12,
    "annually": 1 / 12,
}

RISK_POINTS = {"high": 20, "medium": 10, "low": 3}


@dataclass
class IncomeSource:
    type: str  # w2 | self_employment | rental | partnership | scorp | interest | dividends | pension | social_security
    description: str
    year: int
    amount: float


@dataclass
class IncomeAnalysis:
    sources: List[IncomeSource] = field(default_factory=list)
    income_by_year: Dict[int, float] = field(default_factory=dict)
    qualifying_income: float = 0.0
    trend: str = "stable"
    trend_percent: float = 0.0
    notes: List[str] = field(default_factory=list)


@dataclass
class DebtAnalysis:
    proposed_monthly_payment: float = 0.0
    existing_monthly_debt: float = 0.0
    monthly_housing_expense: float = 0.0
    noi: float = 0.0
    global_dscr: Optional[float] = None
    property_dscr: Optional[float] = None
    front_end_dti: Optional[float] = None
    back_end_dti: Optional[float] = None
    debt_items: List[Dict[str, Any]] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)


@dataclass
class LiquidityAnalysis:
    total_liquid_assets: float = 0.0
    months_of_reserves: float = 0.0
    average_daily_balance: float = 0.0
    minimum_balance: float = 0.0
    nsf_count: int = 0
    current_ratio: Optional[float] = None
    debt_to_equity: Optional[float] = None
    notes: List[str] = field(default_factory=list)


@dataclass
class RiskFlag:
    severity: str  # high | medium | low
    category: str
    title: str
    description: str


@dataclass
class AnalysisResult:
    income: IncomeAnalysis
    debt: DebtAnalysis
    liquidity: LiquidityAnalysis
    risk_flags: List[RiskFlag]
    risk_score: int
    risk_rating: str

    @property
    def summary(self) -> Dict[str, Any]:
        return {
            "qualifying_income": self.income.qualifying_income,
            "global_dscr": self.debt.global_dscr,
            "back_end_dti": self.debt.back_end_dti,
            "months_of_reserves": self.liquidity.months_of_reserves,
            "risk_rating": self.risk_rating,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["summary"] = self.summary
        return data


# ----------------------------------------------------------------------------
# Income
# ----------------------------------------------------------------------------

def _doc_year(doc: DocumentExtraction) -> int:
    if doc.year:
        return int(doc.year)
    return int(num(doc.data, "metadata.taxYear") or num(doc.data, "taxYear"))


def _income_sources(doc: DocumentExtraction) -> List[IncomeSource]:
    data, year = doc.data, _doc_year(doc)
    doc_type = normalize_doc_type(doc.doc_type)

    if doc_type == "W2":
        employer = str((data.get("metadata") or {}).get("employerName") or "W-2 employer")
        return [IncomeSource("w2", employer, year, num(data, "wagesTips"))]

    if doc_type == "FORM_1040":
        sources = [IncomeSource("w2", "Form 1040 wages", year, num(data, "income.wages_line1"))]
        for i, sc in enumerate(as_list(data.get("scheduleC"))):
            name = sc.get("businessName") or f"Schedule C #{i + 1}"
            sources.append(IncomeSource("self_employment", name, year, num(sc, "netProfit_line31")))
        for i, prop in enumerate(as_list((data.get("scheduleE") or {}).get("properties"))):
            name = prop.get("address") or f"Rental #{i + 1}"
            sources.append(IncomeSource("rental", name, year, num(prop, "netRentalIncome")))
        sources.append(IncomeSource("interest", "Taxable interest", year, num(data, "income.taxableInterest_line2b")))
        sources.append(IncomeSource("dividends", "Dividends", year, num(data, "income.ordinaryDividends_line3b")))
        sources.append(IncomeSource("pension", "Pensions", year, num(data, "income.taxablePensions_line5b")))
        sources.append(IncomeSource(
            "social_security", "Social security", year, num(data, "income.taxableSocialSecurity_line6b"),
        ))
        return [s for s in sources if s.amount]

    if doc_type == "SCHEDULE_K1":
        name = str((data.get("metadata") or {}).get("entityName") or "K-1 entity")
        amount = num(data, "ordinaryIncome") + num(data, "guaranteedPayments")
        return [IncomeSource("partnership", name, year, amount)]

    if doc_type == "FORM_1120S":
        return [IncomeSource("scorp", "S corporation", year, num(data, "ordinaryBusinessIncome_line22"))]

    if doc_type == "FORM_1065":
        return [IncomeSource("partnership", "Partnership", year, num(data, "ordinaryBusinessIncome_line23"))]

    return []


def _two_year_rule(by_year: Dict[int, float]) -> Tuple[float, Optional[str]]:
    """Two-year average, or the latest year when it declined."""
    years = sorted(by_year)
    if not years:
        return 0.0, None
    if len(years) == 1:
        return by_year[years[0]], "Only 1 year of history available"
    recent, prior = by_year[years[-1]], by_year[years[-2]]
    if recent < prior:
        return recent, f"Declining ({years[-2]}: ${prior:,.0f} to {years[-1]}: ${recent:,.0f}); using lower year"
    return (recent + prior) / 2, None


def analyze_income(docs: Sequence[DocumentExtraction]) -> IncomeAnalysis:
    analysis = IncomeAnalysis()
    # W-2 forms supersede the 1040 wage line for the same year
    w2_years = {_doc_year(d) for d in docs if normalize_doc_type(d.doc_type) == "W2"}
    seen_w2 = set()
    for doc in docs:
        is_1040 = normalize_doc_type(doc.doc_type) == "FORM_1040"
        for source in _income_sources(doc):
            if source.type == "w2":
                if is_1040 and source.year in w2_years:
                    continue
                key = (source.description, source.year, source.amount)
                if key in seen_w2:
                    continue
                seen_w2.add(key)
            analysis.sources.append(source)

    by_year: Dict[int, float] = defaultdict(float)
    for source in analysis.sources:
        by_year[source.year] += source.amount
    analysis.income_by_year = dict(by_year)
    years = sorted(by_year)
    latest = years[-1] if years else 0

    if len(years) >= 2:
        prior, current = by_year[years[-2]], by_year[latest]
        if prior:
            analysis.trend_percent = round((current - prior) / abs(prior), 4)
        elif current > 0:
            analysis.trend_percent = 1.0
        if analysis.trend_percent > 0.05:
            analysis.trend = "increasing"
        elif analysis.trend_percent < -0.05:
            analysis.trend = "declining"

    qualifying = sum(
        s.amount for s in analysis.sources
        if s.year == latest and s.type in ("w2", "rental", "interest", "dividends", "pension", "social_security")
    )
    for kinds, label in ((("self_employment",), "Self-employment"), (("partnership", "scorp"), "Pass-through")):
        per_year: Dict[int, float] = defaultdict(float)
        for source in analysis.sources:
            if source.type in kinds:
                per_year[source.year] += source.amount
        amount, note = _two_year_rule(per_year)
        qualifying += amount
        if note:
            analysis.notes.append(f"{label} income: {note}")

    analysis.qualifying_income = round(qualifying, 2)
    if not analysis.sources:
        analysis.notes.append("No income sources identified from provided documents")
    elif len(years) < 2:
        analysis.notes.append("Less than 2 years of income history provided")
    return analysis


# ----------------------------------------------------------------------------
# Debt service
# ----------------------------------------------------------------------------

def _recurring_payments(statements: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Debt-like payments across statements, deduplicated by payee and amount."""
    seen: Dict[Tuple[str, int], Dict[str, Any]] = {}
    for statement in statements:
        payments = statement.get("regularPaymentsDetected") or statement.get("withdrawals") or []
        for payment in as_list(payments):
            if not isinstance(payment, dict):
                continue
            description = str(payment.get("description") or payment.get("payee") or "Unknown payment")
            category = str(payment.get("category") or "").lower()
            amount = abs(num(payment, "amount"))
            if amount <= 0:
                continue
            housing = bool(HOUSING_PATTERN.search(description)) or category in ("housing", "mortgage", "rent")
            if not (housing or DEBT_PATTERN.search(description) or category in ("debt", "loan")):
                continue
            factor = MONTHLY_FACTORS.get(str(payment.get("frequency") or "monthly").lower(), 1.0)
            key = (description.lower(), round(amount))
            seen.setdefault(key, {
                "description": description,
                "monthly_amount": round(amount * factor, 2),
                "housing": housing,
            })
    return list(seen.values())


def _property_noi(rental: Optional[Dict[str, Any]]) -> float:
    if not rental:
        return 0.0
    if "noi" in rental:
        return num(rental, "noi")
    annual = num(rental, "summary.totalAnnualRent") or num(rental, "summary.totalMonthlyRent") * 12
    if annual:
        return annual - num(rental, "summary.operatingExpenses")
    noi = 0.0
    for prop in as_list(rental.get("properties")):
        noi += num(prop, "rentsReceived") - num(prop, "totalExpenses") + num(prop, "mortgageInterest")
    return noi


def analyze_debt(
    income: IncomeAnalysis,
    statements: Sequence[Dict[str, Any]],
    rental: Optional[Dict[str, Any]],
    proposed_monthly_payment: float,
) -> DebtAnalysis:
    analysis = DebtAnalysis(proposed_monthly_payment=round(proposed_monthly_payment, 2))
    payments = _recurring_payments(statements)
    analysis.debt_items = payments

    housing = sum(p["monthly_amount"] for p in payments if p["housing"])
    other = sum(p["monthly_amount"] for p in payments if not p["housing"])
    analysis.existing_monthly_debt = round(housing + other, 2)
    analysis.monthly_housing_expense = round(housing + proposed_monthly_payment, 2)
    if payments:
        analysis.notes.append(
            f"Detected {len(payments)} recurring debt payment(s) totaling ${analysis.existing_monthly_debt:,.0f}/month"
        )

    property_noi = _property_noi(rental)
    analysis.noi = round(property_noi if property_noi > 0 else income.qualifying_income, 2)

    annual_debt_service = (analysis.existing_monthly_debt + proposed_monthly_payment) * 12
    if annual_debt_service > 0:
        analysis.global_dscr = round(analysis.noi / annual_debt_service, 2)
    else:
        analysis.notes.append("No debt service identified; DSCR cannot be calculated")
    if property_noi > 0 and proposed_monthly_payment > 0:
        analysis.property_dscr = round(property_noi / (proposed_monthly_payment * 12), 2)

    gross_monthly = income.qualifying_income / 12
    if gross_monthly > 0:
        analysis.front_end_dti = round(analysis.monthly_housing_expense / gross_monthly, 4)
        analysis.back_end_dti = round((analysis.monthly_housing_expense + other) / gross_monthly, 4)
    else:
        analysis.notes.append("Qualifying income is zero or negative; DTI cannot be calculated")
    return analysis


# ----------------------------------------------------------------------------
# Liquidity
# ----------------------------------------------------------------------------

def analyze_liquidity(
    statements: Sequence[Dict[str, Any]],
    balance_sheet: Optional[Dict[str, Any]],
    monthly_debt_service: float,
) -> LiquidityAnalysis:
    analysis = LiquidityAnalysis()

    latest_by_account: Dict[str, Tuple[str, float]] = {}
    averages: List[float] = []
    minimums: List[float] = []
    for i, statement in enumerate(statements):
        account = str((statement.get("metadata") or {}).get("accountNumber") or f"account_{i}")
        period = str((statement.get("statementPeriod") or {}).get("endDate") or "")
        ending = num(statement, "summary.endingBalance")
        if account not in latest_by_account or period > latest_by_account[account][0]:
            latest_by_account[account] = (period, ending)
        if num(statement, "summary.averageDailyBalance"):
            averages.append(num(statement, "summary.averageDailyBalance"))
        if "minimumBalance" in (statement.get("summary") or {}):
            minimums.append(num(statement, "summary.minimumBalance"))
        analysis.nsf_count += int(num(statement, "summary.nsfCount"))

    bank_total = sum(balance for _, balance in latest_by_account.values())
    analysis.average_daily_balance = round(sum(averages) / len(averages), 2) if averages else 0.0
    analysis.minimum_balance = round(min(minimums), 2) if minimums else 0.0

    cash = 0.0
    if balance_sheet:
        cash = num(balance_sheet, "cash") or num(balance_sheet, "cashAndEquivalents")
        current_assets = num(balance_sheet, "totalCurrentAssets")
        current_liabilities = num(balance_sheet, "totalCurrentLiabilities")
        if current_assets > 0 and current_liabilities > 0:
            analysis.current_ratio = round(current_assets / current_liabilities, 2)
        equity = num(balance_sheet, "totalEquity")
        liabilities = num(balance_sheet, "totalLiabilities")
        if equity and liabilities > 0:
            analysis.debt_to_equity = round(liabilities / equity, 2)

    analysis.total_liquid_assets = round(max(bank_total, cash), 2)
    if monthly_debt_service > 0:
        analysis.months_of_reserves = round(analysis.total_liquid_assets / monthly_debt_service, 2)
    elif analysis.total_liquid_assets > 0:
        analysis.months_of_reserves = UNBOUNDED_RESERVES
        analysis.notes.append("No monthly debt service; months of reserves not bounded")

    if analysis.minimum_balance < 0:
        analysis.notes.append(f"Account went negative (min balance ${analysis.minimum_balance:,.2f})")
    if not statements and not balance_sheet:
        analysis.notes.append("No bank statements or balance sheet provided; liquidity cannot be assessed")
    return analysis


# ----------------------------------------------------------------------------
# Risk
# ----------------------------------------------------------------------------

def detect_risk_flags(
    income: IncomeAnalysis,
    debt: DebtAnalysis,
    liquidity: LiquidityAnalysis,
    docs: Sequence[DocumentExtraction],
) -> List[RiskFlag]:
    flags: List[RiskFlag] = []
    dscr, dti = debt.global_dscr, debt.back_end_dti

    if dscr is not None and dscr < 1.0:
        flags.append(RiskFlag("high", "debt_service", "DSCR Below 1.0",
                              f"Global DSCR is {dscr:.2f}; income does not cover debt obligations"))
    elif dscr is not None and dscr < 1.25:
        flags.append(RiskFlag("medium", "debt_service", "Thin Debt Coverage",
                              f"Global DSCR is {dscr:.2f}, below the 1.25 comfort level"))

    if dti is not None and dti > 0.50:
        flags.append(RiskFlag("high", "debt_to_income", "Excessive Debt-to-Income",
                              f"Back-end DTI is {dti * 100:.1f}%, exceeding the 50% maximum"))
    elif dti is not None and dti > 0.43:
        flags.append(RiskFlag("medium", "debt_to_income", "Elevated Debt-to-Income",
                              f"Back-end DTI is {dti * 100:.1f}%"))

    if liquidity.nsf_count > 3:
        flags.append(RiskFlag("high", "cash_management", "Frequent NSF Items",
                              f"{liquidity.nsf_count} NSF items detected in bank statements"))
    elif liquidity.nsf_count >= 1:
        flags.append(RiskFlag("medium", "cash_management", "NSF Items",
                              f"{liquidity.nsf_count} NSF item(s) detected in bank statements"))

    if income.trend == "declining" and income.trend_percent < -0.20:
        flags.append(RiskFlag("high", "income_stability", "Significant Income Decline",
                              f"Income declined {abs(income.trend_percent) * 100:.0f}% year-over-year"))

    if liquidity.months_of_reserves < 3:
        flags.append(RiskFlag("high", "liquidity", "Insufficient Reserves",
                              f"Only {liquidity.months_of_reserves:.1f} months of reserves available"))
    elif liquidity.months_of_reserves < 6:
        flags.append(RiskFlag("medium", "liquidity", "Limited Reserves",
                              f"{liquidity.months_of_reserves:.1f} months of reserves available"))

    for doc in docs:
        if normalize_doc_type(doc.doc_type) != "BALANCE_SHEET":
            continue
        assets = num(doc.data, "totalAssets")
        other_side = num(doc.data, "totalLiabilities") + num(doc.data, "totalEquity")
        if assets > 0 and other_side > 0 and abs(assets - other_side) > max(1.0, assets * 0.001):
            flags.append(RiskFlag("high", "financial_statements", "Balance Sheet Does Not Balance",
                                  f"Assets ${assets:,.0f} vs liabilities plus equity ${other_side:,.0f}"))

    se_years = {s.year for s in income.sources if s.type == "self_employment"}
    if len(se_years) == 1:
        flags.append(RiskFlag("low", "income_stability", "Limited Self-Employment History",
                              "Only one year of self-employment income documented"))
    if liquidity.minimum_balance < 0:
        flags.append(RiskFlag("low", "cash_management", "Overdraft",
                              f"Minimum balance of ${liquidity.minimum_balance:,.2f}"))

    order = {"high": 0, "medium": 1, "low": 2}
    return sorted(flags, key=lambda f: order[f.severity])


def calculate_risk_score(flags: Iterable[RiskFlag]) -> int:
    return min(sum(RISK_POINTS[f.severity] for f in flags), 100)


def risk_rating(score: int) -> str:
    if score <= 25:
        return "low"
    if score <= 45:
        return "moderate"
    if score <= 70:
        return "elevated"
    return "high"


def analyze_deal(docs: Sequence[DocumentExtraction], proposed_monthly_payment: float = 0.0) -> AnalysisResult:
    """
    Run the full analysis over a deal's verified extractions.

    Args:
        docs: Verified extractions, one per source document.
        proposed_monthly_payment: Payment on the requested loan, when known.
    """
    statements = [d.data for d in docs if normalize_doc_type(d.doc_type) in BANK_TYPES]
    rent_rolls = [d.data for d in docs if normalize_doc_type(d.doc_type) == "RENT_ROLL"]
    balance_sheets = [d.data for d in docs if normalize_doc_type(d.doc_type) == "BALANCE_SHEET"]
    rental = rent_rolls[0] if rent_rolls else next(
        (d.data.get("scheduleE") for d in docs if normalize_doc_type(d.doc_type) == "FORM_1040"
         and d.data.get("scheduleE")),
        None,
    )

    income = analyze_income(docs)
    debt = analyze_debt(income, statements, rental, proposed_monthly_payment)
    monthly_debt_service = debt.existing_monthly_debt + debt.proposed_monthly_payment
    liquidity = analyze_liquidity(statements, balance_sheets[0] if balance_sheets else None, monthly_debt_service)
    flags = detect_risk_flags(income, debt, liquidity, docs)
    score = calculate_risk_score(flags)

    result = AnalysisResult(
        income=income,
        debt=debt,
        liquidity=liquidity,
        risk_flags=flags,
        risk_score=score,
        risk_rating=risk_rating(score),
    )
    logger.info(
        "deal_analyzed",
        document_count=len(docs),
        qualifying_income=income.qualifying_income,
        global_dscr=debt.global_dscr,
        risk_rating=result.risk_rating,
    )
    return result
