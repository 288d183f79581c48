"""
Deterministic math verification for extracted financial data.

Every declared total is recomputed from its declared components. A check
fails iff |declared - recomputed| exceeds its tolerance: $1 for currency
equations and 0.02 for ratios, unless the check says otherwise.
No generative calls.
"""
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from dealforge.services.extraction.classifier import normalize_doc_type
from dealforge.services.extraction.values import get_path, is_number, parse_dollar_amount

ABSOLUTE_TOLERANCE = 1.0
PERCENT_TOLERANCE = 0.02


@dataclass
class MathCheck:
    """One recomputed total."""
    field_path: str
    description: str
    expected: float
    actual: float
    difference: float
    tolerance: float
    passed: bool
    formula: str = ""
    document_page: Optional[int] = None
    document_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def num(obj: Any, path: str) -> float:
    """Numeric value at path, or 0 when missing or not a finite number."""
    value = get_path(obj, path) if obj is not None else None
    if is_number(value):
        return float(value)
    if isinstance(value, str):
        return parse_dollar_amount(value) or 0.0
    return 0.0


def has_field(obj: Any, path: str) -> bool:
    return obj is not None and get_path(obj, path) is not None


def sum_fields(obj: Any, paths: Iterable[str]) -> float:
    return sum(num(obj, p) for p in paths)


def as_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return [value]
    return []


def check_equation(
    description: str,
    field_path: str,
    expected: float,
    actual: float,
    tolerance: float = ABSOLUTE_TOLERANCE,
    formula: str = "",
) -> MathCheck:
    difference = abs(actual - expected)
    return MathCheck(
        field_path=field_path,
        description=description,
        expected=round(expected, 2),
        actual=round(actual, 2),
        difference=round(difference, 2),
        tolerance=tolerance,
        passed=difference <= tolerance,
        formula=formula,
    )


def check_ratio(
    description: str,
    field_path: str,
    expected_ratio: float,
    actual_ratio: float,
    tolerance: float = PERCENT_TOLERANCE,
    formula: str = "",
) -> MathCheck:
    difference = abs(actual_ratio - expected_ratio)
    return MathCheck(
        field_path=field_path,
        description=description,
        expected=round(expected_ratio, 4),
        actual=round(actual_ratio, 4),
        difference=round(difference, 4),
        tolerance=tolerance,
        passed=difference <= tolerance,
        formula=formula,
    )


# =============================================================================
# Form 1040 with Schedules C and E
# =============================================================================

SCHEDULE_C_EXPENSES = (
    "advertising", "carAndTruck", "commissions", "contractLabor",
    "depletion", "depreciation_line13", "employeeBenefits", "insurance",
    "interestMortgage", "interestOther", "legal", "officeExpense",
    "pensionPlans", "rent", "repairs", "supplies", "taxes", "travel",
    "meals", "utilities", "wages", "otherExpenses",
)

SCHEDULE_E_EXPENSES = (
    "advertising", "auto", "cleaning", "commissions", "insurance", "legal",
    "management", "mortgageInterest", "otherInterest", "repairs", "supplies",
    "taxes", "utilities", "depreciation", "other",
)


def check_1040(data: Dict[str, Any]) -> List[MathCheck]:
    checks: List[MathCheck] = []
    income = data.get("income") or data

    lines_1_to_8 = sum_fields(income, [
        "wages_line1", "taxableInterest_line2b", "ordinaryDividends_line3b",
        "taxableIra_line4b", "taxablePensions_line5b", "taxableSocialSecurity_line6b",
        "capitalGain_line7", "otherIncome_line8",
    ])
    total_income = num(income, "totalIncome_line9")
    checks.append(check_equation(
        "Total Income (line 9) should equal sum of lines 1 through 8",
        "income.totalIncome_line9", lines_1_to_8, total_income,
        formula="line9 = line1 + line2b + line3b + line4b + line5b + line6b + line7 + line8",
    ))

    adjustments = num(income, "adjustments_line10") or num(data, "adjustments_line10")
    agi = num(income, "agi_line11") or num(data, "agi_line11")
    checks.append(check_equation(
        "AGI (line 11) should equal Total Income (line 9) minus Adjustments (line 10)",
        "income.agi_line11", total_income - adjustments, agi,
        formula="line11 = line9 - line10",
    ))

    taxable_income = num(income, "taxableIncome_line15")
    if taxable_income != 0 or has_field(income, "taxableIncome_line15"):
        deductions = num(income, "standardOrItemized_line12")
        qbi = num(income, "qbi_line13a")
        checks.append(check_equation(
            "Taxable Income (line 15) should equal AGI (line 11) minus Deductions (line 12) minus QBI (line 13a)",
            "income.taxableIncome_line15", agi - deductions - qbi, taxable_income,
            formula="line15 = line11 - line12 - line13a",
        ))

    for i, sc in enumerate(as_list(data.get("scheduleC"))):
        checks.extend(_check_schedule_c(i, sc))

    schedule_es = as_list(data.get("scheduleE"))
    properties: List[Any] = []
    if schedule_es:
        first = schedule_es[0]
        properties = first["properties"] if isinstance(first.get("properties"), list) else schedule_es
    for i, prop in enumerate(properties):
        checks.extend(_check_schedule_e_property(i, prop))

    tax = data.get("tax") or data
    total_tax = num(tax, "totalTax_line24")
    total_payments = num(tax, "totalPayments_line33")
    overpaid = num(tax, "overpaid_line34")
    amount_owed = num(tax, "amountOwed_line37")
    if total_payments != 0 and total_tax != 0:
        if overpaid != 0:
            checks.append(check_equation(
                "Overpaid (line 34) should equal totalPayments (line 33) minus totalTax (line 24)",
                "tax.overpaid_line34", total_payments - total_tax, overpaid,
                formula="line34 = line33 - line24",
            ))
        if amount_owed != 0:
            checks.append(check_equation(
                "Amount owed (line 37) should equal totalTax (line 24) minus totalPayments (line 33)",
                "tax.amountOwed_line37", total_tax - total_payments, amount_owed,
                formula="line37 = line24 - line33",
            ))

    w2s = data.get("w2Summary") if isinstance(data.get("w2Summary"), list) else []
    if w2s:
        w2_sum = sum(num(w2, "wages_box1") for w2 in w2s)
        line1 = num(income, "wages_line1")
        if w2_sum > 0 and line1 > 0:
            checks.append(check_equation(
                "Sum of W-2 wages should approximately match 1040 Line 1 wages",
                "income.wages_line1", w2_sum, line1,
                tolerance=max(ABSOLUTE_TOLERANCE, line1 * PERCENT_TOLERANCE),
                formula="line1 ~ sum(W-2 box 1)",
            ))

    return checks


def _check_schedule_c(i: int, sc: Dict[str, Any]) -> List[MathCheck]:
    checks: List[MathCheck] = []
    prefix = f"scheduleC[{i}]"
    label = f"Schedule C #{i + 1}"

    gross_receipts = num(sc, "grossReceipts_line1")
    cogs = num(sc, "cogs_line4")
    gross_profit = num(sc, "grossProfit_line5")
    checks.append(check_equation(
        f"{label}: grossProfit (line 5) should equal grossReceipts (line 1) minus COGS (line 4)",
        f"{prefix}.grossProfit_line5", gross_receipts - cogs, gross_profit,
        formula="line5 = line1 - line4",
    ))

    other_income = num(sc, "otherIncome_line6")
    gross_income = num(sc, "grossIncome_line7")
    if gross_income != 0 or has_field(sc, "grossIncome_line7"):
        checks.append(check_equation(
            f"{label}: grossIncome (line 7) should equal grossProfit (line 5) plus otherIncome (line 6)",
            f"{prefix}.grossIncome_line7", gross_profit + other_income, gross_income,
            formula="line7 = line5 + line6",
        ))

    total_expenses = num(sc, "totalExpenses_line28")
    net_profit = num(sc, "netProfit_line31")
    checks.append(check_equation(
        f"{label}: netProfit (line 31) should equal grossIncome (line 7) minus totalExpenses (line 28)",
        f"{prefix}.netProfit_line31", (gross_income or gross_profit + other_income) - total_expenses, net_profit,
        formula="line31 = line7 - line28",
    ))

    expenses = sc.get("expenses") or sc
    expense_sum = sum_fields(expenses, SCHEDULE_C_EXPENSES)
    if expense_sum > 0:
        checks.append(check_equation(
            f"{label}: totalExpenses (line 28) should equal sum of all expense lines",
            f"{prefix}.totalExpenses_line28", expense_sum, total_expenses,
            formula="line28 = sum(lines 8-27)",
        ))
    return checks


def _check_schedule_e_property(i: int, prop: Dict[str, Any]) -> List[MathCheck]:
    checks: List[MathCheck] = []
    prefix = f"scheduleE.properties[{i}]"
    label = f"Schedule E property #{i + 1}"

    rents = num(prop, "rentsReceived")
    total_expenses = num(prop, "totalExpenses")
    net = num(prop, "netRentalIncome") or num(prop, "netIncome")
    if rents != 0 or total_expenses != 0:
        checks.append(check_equation(
            f"{label}: netRentalIncome should equal rentsReceived minus totalExpenses",
            f"{prefix}.netRentalIncome", rents - total_expenses, net,
            formula="netRentalIncome = rentsReceived - totalExpenses",
        ))

    expenses = prop.get("expenses") or prop
    expense_sum = sum_fields(expenses, SCHEDULE_E_EXPENSES)
    if expense_sum > 0:
        checks.append(check_equation(
            f"{label}: totalExpenses should equal sum of all expense lines",
            f"{prefix}.totalExpenses", expense_sum, total_expenses,
            formula="totalExpenses = sum(expense lines)",
        ))
    return checks


# =============================================================================
# Business returns
# =============================================================================

def _check_receipts_and_gross_profit(data: Dict[str, Any], net_receipts_field: str) -> List[MathCheck]:
    gross_receipts = num(data, "income.grossReceipts_line1a")
    returns = num(data, "income.returnsAllowances_line1b")
    net_receipts = num(data, f"income.{net_receipts_field}")
    cogs = num(data, "income.costOfGoodsSold_line2")
    gross_profit = num(data, "income.grossProfit_line3")
    return [
        check_equation(
            "Balance after returns (line 1c) should equal gross receipts (1a) minus returns (1b)",
            f"income.{net_receipts_field}", gross_receipts - returns, net_receipts,
            formula="line1c = line1a - line1b",
        ),
        check_equation(
            "Gross profit (line 3) should equal balance after returns (1c) minus COGS (2)",
            "income.grossProfit_line3", net_receipts - cogs, gross_profit,
            formula="line3 = line1c - line2",
        ),
    ]


def check_1120(data: Dict[str, Any]) -> List[MathCheck]:
    checks = _check_receipts_and_gross_profit(data, "balanceAfterReturns_line1c")

    total_income = num(data, "income.totalIncome_line11")
    checks.append(check_equation(
        "Total income (line 11) should equal sum of lines 3 through 10",
        "income.totalIncome_line11",
        sum_fields(data, [
            "income.grossProfit_line3", "income.dividendsReceived_line4", "income.interestIncome_line5",
            "income.grossRents_line6", "income.grossRoyalties_line7", "income.capitalGainNet_line8",
            "income.netGainForm4797_line9", "income.otherIncome_line10",
        ]),
        total_income,
        formula="line11 = sum(lines 3-10)",
    ))

    total_deductions = num(data, "deductions.totalDeductions_line27")
    before_nol = num(data, "taxableIncome.taxableIncomeBeforeNOL_line28")
    checks.append(check_equation(
        "Taxable income before NOL (line 28) should equal total income (11) minus total deductions (27)",
        "taxableIncome.taxableIncomeBeforeNOL_line28", total_income - total_deductions, before_nol,
        formula="line28 = line11 - line27",
    ))

    nol = num(data, "taxableIncome.netOperatingLossDeduction_line29a")
    special = num(data, "taxableIncome.totalSpecialDeductions_line29c")
    checks.append(check_equation(
        "Taxable income (line 30) should equal line 28 minus NOL (29a) minus special deductions (29c)",
        "taxableIncome.taxableIncome_line30", before_nol - nol - special,
        num(data, "taxableIncome.taxableIncome_line30"),
        formula="line30 = line28 - line29a - line29c",
    ))

    checks.extend(check_schedule_l(data))
    return checks


def check_1120s(data: Dict[str, Any]) -> List[MathCheck]:
    checks = _check_receipts_and_gross_profit(data, "balanceAfterReturns_line1c")

    total_income = num(data, "income.totalIncome_line6")
    checks.append(check_equation(
        "Total income (line 6) should equal sum of lines 3 through 5",
        "income.totalIncome_line6",
        sum_fields(data, ["income.grossProfit_line3", "income.netGainForm4797_line4", "income.otherIncome_line5"]),
        total_income,
        formula="line6 = line3 + line4 + line5",
    ))

    ordinary_income = num(data, "ordinaryBusinessIncome_line22")
    checks.append(check_equation(
        "Ordinary business income (line 22) should equal total income (6) minus total deductions (21)",
        "ordinaryBusinessIncome_line22", total_income - num(data, "deductions.totalDeductions_line21"),
        ordinary_income,
        formula="line22 = line6 - line21",
    ))

    officer_total = num(data, "officerCompensation") or num(data, "deductions.compensationOfOfficers_line7")
    line7 = num(data, "deductions.compensationOfOfficers_line7")
    if officer_total != 0 and line7 != 0 and officer_total != line7:
        checks.append(check_equation(
            "Officer compensation total should match line 7",
            "deductions.compensationOfOfficers_line7", officer_total, line7,
            formula="line7 = officer compensation total",
        ))

    checks.extend(check_schedule_l(data))
    return checks


def check_1065(data: Dict[str, Any]) -> List[MathCheck]:
    checks = _check_receipts_and_gross_profit(data, "netReceipts_line1c")

    total_income = num(data, "income.totalIncome_line8")
    checks.append(check_equation(
        "Total income (line 8) should equal sum of lines 3 through 7",
        "income.totalIncome_line8",
        sum_fields(data, [
            "income.grossProfit_line3", "income.ordinaryIncomeFromOtherPartnerships_line4",
            "income.netFarmProfit_line5", "income.netGainForm4797_line6", "income.otherIncome_line7",
        ]),
        total_income,
        formula="line8 = sum(lines 3-7)",
    ))

    checks.append(check_equation(
        "Ordinary business income (line 23) should equal total income (8) minus total deductions (22)",
        "ordinaryBusinessIncome_line23", total_income - num(data, "deductions.totalDeductions_line22"),
        num(data, "ordinaryBusinessIncome_line23"),
        formula="line23 = line8 - line22",
    ))

    partners = data.get("partners") if isinstance(data.get("partners"), list) else []
    if partners:
        profit_sum = sum(num(p, "profitSharePercent") or num(p, "profitShare") for p in partners)
        if profit_sum > 0:
            checks.append(check_equation(
                "Partner profit share percentages should sum to 100%",
                "partners.profitSharePercent", 100, profit_sum, tolerance=0.5,
                formula="sum(profitSharePercent) = 100",
            ))
        loss_sum = sum(num(p, "lossSharePercent") or num(p, "lossShare") for p in partners)
        if loss_sum > 0:
            checks.append(check_equation(
                "Partner loss share percentages should sum to 100%",
                "partners.lossSharePercent", 100, loss_sum, tolerance=0.5,
                formula="sum(lossSharePercent) = 100",
            ))

    guaranteed_k = num(data, "scheduleK.incomeAndLoss.totalGuaranteedPayments_line4c")
    guaranteed_line10 = num(data, "deductions.guaranteedPaymentsToPartners_line10")
    if guaranteed_k != 0 and guaranteed_line10 != 0:
        checks.append(check_equation(
            "Schedule K total guaranteed payments (line 4c) should match line 10 of deductions",
            "scheduleK.incomeAndLoss.totalGuaranteedPayments_line4c", guaranteed_line10, guaranteed_k,
            formula="K line4c = line10",
        ))

    checks.extend(check_schedule_l(data))
    return checks


SCHEDULE_L_ASSETS = (
    "cash", "tradeNotes", "inventories", "governmentObligations",
    "taxExemptSecurities", "otherCurrentAssets", "loansToShareholders",
    "mortgageLoans", "otherInvestments", "buildingsAndDepreciation",
    "depletableAssets", "land", "intangibleAssets", "otherAssets",
)


def check_schedule_l(data: Dict[str, Any]) -> List[MathCheck]:
    """Balance sheet per books, shared by 1120, 1120S and 1065."""
    checks: List[MathCheck] = []
    schedule_l = data.get("scheduleL") or data.get("balanceSheet") or {}
    if not isinstance(schedule_l, dict):
        return checks

    for period in ("beginningOfYear", "endOfYear", "boy", "eoy"):
        period_data = schedule_l.get(period)
        if not isinstance(period_data, dict) or not period_data:
            continue
        label = "Beginning of Year" if period in ("beginningOfYear", "boy") else "End of Year"

        total_assets = num(period_data, "totalAssets")
        asset_sum = sum_fields(period_data, SCHEDULE_L_ASSETS)
        if total_assets != 0 and asset_sum > 0:
            checks.append(check_equation(
                f"Schedule L {label}: total assets should equal sum of all asset line items",
                f"scheduleL.{period}.totalAssets", asset_sum, total_assets,
                formula="totalAssets = sum(asset lines)",
            ))

        total_liabilities = num(period_data, "totalLiabilities")
        total_equity = (num(period_data, "totalEquity") or num(period_data, "totalShareholdersEquity")
                        or num(period_data, "partnersCapital"))
        liab_and_equity = num(period_data, "totalLiabilitiesAndEquity")
        if total_assets != 0 and (liab_and_equity != 0 or (total_liabilities != 0 and total_equity != 0)):
            checks.append(check_equation(
                f"Schedule L {label}: total liabilities + equity should equal total assets",
                f"scheduleL.{period}.totalLiabilitiesAndEquity",
                total_assets,
                liab_and_equity if liab_and_equity != 0 else total_liabilities + total_equity,
                formula="totalLiabilitiesAndEquity = totalAssets",
            ))
    return checks


# =============================================================================
# Statements
# =============================================================================

def check_bank_statement(data: Dict[str, Any]) -> List[MathCheck]:
    checks: List[MathCheck] = []
    summary = data.get("summary") or data

    beginning = num(summary, "beginningBalance")
    ending = num(summary, "endingBalance")
    deposits_total = num(summary, "totalDeposits")
    withdrawals_total = num(summary, "totalWithdrawals")

    if beginning != 0 or ending != 0:
        checks.append(check_equation(
            "Ending balance should equal beginning balance plus total deposits minus total withdrawals",
            "summary.endingBalance", beginning + deposits_total - withdrawals_total, ending,
            formula="ending = beginning + deposits - withdrawals",
        ))

    deposits = data.get("deposits") if isinstance(data.get("deposits"), list) else []
    if deposits and deposits_total != 0:
        checks.append(check_equation(
            "Sum of individual deposits should approximately equal total deposits",
            "summary.totalDeposits", sum(num(d, "amount") for d in deposits), deposits_total,
            tolerance=max(ABSOLUTE_TOLERANCE, deposits_total * PERCENT_TOLERANCE),
            formula="totalDeposits ~ sum(deposits)",
        ))

    withdrawals = data.get("withdrawals") if isinstance(data.get("withdrawals"), list) else []
    if withdrawals and withdrawals_total != 0:
        checks.append(check_equation(
            "Sum of individual withdrawals should approximately equal total withdrawals",
            "summary.totalWithdrawals", sum(abs(num(w, "amount")) for w in withdrawals), withdrawals_total,
            tolerance=max(ABSOLUTE_TOLERANCE, withdrawals_total * PERCENT_TOLERANCE),
            formula="totalWithdrawals ~ sum(|withdrawals|)",
        ))
    return checks


def check_profit_and_loss(data: Dict[str, Any]) -> List[MathCheck]:
    checks: List[MathCheck] = []

    net_revenue = num(data, "netRevenue") or num(data, "totalRevenue") or num(data, "revenue")
    cogs = num(data, "costOfGoodsSold") or num(data, "cogs") or num(data, "cogsTotal")
    gross_profit = num(data, "grossProfit")
    operating_expenses = num(data, "operatingExpenses") or num(data, "totalOperatingExpenses")
    operating_income = num(data, "operatingIncome")
    if has_field(data, "otherIncomeExpense"):
        other = num(data, "otherIncomeExpense")
    else:
        other = num(data, "otherIncome") - num(data, "otherExpense")
    income_tax = num(data, "incomeTaxExpense") or num(data, "taxes")
    net_income = num(data, "netIncome")

    if net_revenue != 0:
        checks.append(check_equation(
            "Gross profit should equal net revenue minus cost of goods sold",
            "grossProfit", net_revenue - cogs, gross_profit,
            formula="grossProfit = netRevenue - COGS",
        ))

    if gross_profit != 0 and operating_expenses != 0:
        checks.append(check_equation(
            "Operating income should equal gross profit minus operating expenses",
            "operatingIncome", gross_profit - operating_expenses, operating_income,
            formula="operatingIncome = grossProfit - operatingExpenses",
        ))

    if operating_income != 0:
        checks.append(check_equation(
            "Net income should equal operating income plus other income/expense minus income tax expense",
            "netIncome", operating_income + other - income_tax, net_income,
            formula="netIncome = operatingIncome + other - incomeTax",
        ))

    if net_revenue != 0 and gross_profit != 0:
        margin = num(data, "grossMargin") or num(data, "grossProfitMargin")
        if margin != 0:
            checks.append(check_ratio(
                "Gross margin should equal gross profit divided by net revenue",
                "grossMargin", gross_profit / net_revenue, margin,
                formula="grossMargin = grossProfit / netRevenue",
            ))

    revenue_items = data.get("revenueLineItems") if isinstance(data.get("revenueLineItems"), list) else []
    if revenue_items:
        gross_revenue = num(data, "grossRevenue") or net_revenue
        checks.append(check_equation(
            "Revenue line items should sum to gross revenue",
            "grossRevenue", sum(num(item, "amount") for item in revenue_items), gross_revenue,
            tolerance=max(ABSOLUTE_TOLERANCE, abs(gross_revenue) * PERCENT_TOLERANCE),
            formula="grossRevenue ~ sum(revenue line items)",
        ))

    expense_items = (data.get("operatingExpenseLineItems")
                     if isinstance(data.get("operatingExpenseLineItems"), list) else [])
    if expense_items:
        checks.append(check_equation(
            "Operating expense line items should sum to total operating expenses",
            "totalOperatingExpenses", sum(num(item, "amount") for item in expense_items), operating_expenses,
            tolerance=max(ABSOLUTE_TOLERANCE, abs(operating_expenses) * PERCENT_TOLERANCE),
            formula="operatingExpenses ~ sum(expense line items)",
        ))

    add_backs = data.get("addBacks") if isinstance(data.get("addBacks"), dict) else {}
    total_add_backs = num(add_backs, "totalAddBacks")
    if total_add_backs != 0:
        one_time = add_backs.get("oneTimeExpenses") if isinstance(add_backs.get("oneTimeExpenses"), list) else []
        components = (
            sum_fields(add_backs, ["depreciation", "amortization", "interest", "ownerCompensation"])
            + sum(num(e, "amount") for e in one_time)
        )
        checks.append(check_equation(
            "Total add-backs should equal depreciation + amortization + interest + owner comp + one-time expenses",
            "addBacks.totalAddBacks", components, total_add_backs,
            formula="totalAddBacks = D + A + I + ownerComp + oneTime",
        ))

        adjusted = num(add_backs, "adjustedNetIncome")
        if adjusted != 0:
            checks.append(check_equation(
                "Adjusted net income should equal net income plus total add-backs",
                "addBacks.adjustedNetIncome", net_income + total_add_backs, adjusted,
                formula="adjustedNetIncome = netIncome + totalAddBacks",
            ))
    return checks


def check_balance_sheet(data: Dict[str, Any]) -> List[MathCheck]:
    checks: List[MathCheck] = []

    current_assets = num(data, "totalCurrentAssets")
    net_fixed = num(data, "netFixedAssets") or num(data, "netFixed")
    other_assets = num(data, "otherAssets") or num(data, "totalOtherAssets")
    total_assets = num(data, "totalAssets")
    if total_assets != 0:
        checks.append(check_equation(
            "Total assets should equal total current assets plus net fixed assets plus other assets",
            "totalAssets", current_assets + net_fixed + other_assets, total_assets,
            formula="totalAssets = currentAssets + netFixed + otherAssets",
        ))

    current_liabilities = num(data, "totalCurrentLiabilities")
    long_term = num(data, "totalLongTermLiabilities") or num(data, "totalLongTerm")
    total_liabilities = num(data, "totalLiabilities")
    if total_liabilities != 0:
        checks.append(check_equation(
            "Total liabilities should equal total current liabilities plus total long-term liabilities",
            "totalLiabilities", current_liabilities + long_term, total_liabilities,
            formula="totalLiabilities = currentLiabilities + longTerm",
        ))

    total_equity = num(data, "totalEquity") or num(data, "totalShareholdersEquity")
    liab_and_equity = num(data, "totalLiabilitiesAndEquity")
    if liab_and_equity != 0:
        checks.append(check_equation(
            "Total liabilities and equity should equal total liabilities plus total equity",
            "totalLiabilitiesAndEquity", total_liabilities + total_equity, liab_and_equity,
            formula="totalLiabilitiesAndEquity = totalLiabilities + totalEquity",
        ))

    if total_assets != 0 and (liab_and_equity != 0 or (total_liabilities != 0 and total_equity != 0)):
        checks.append(check_equation(
            "Total assets must equal total liabilities and equity",
            "totalAssets_vs_totalLiabilitiesAndEquity",
            total_assets,
            liab_and_equity if liab_and_equity != 0 else total_liabilities + total_equity,
            formula="totalAssets = totalLiabilitiesAndEquity",
        ))

    gross_fixed = num(data, "propertyEquipment") or num(data, "grossFixedAssets")
    if gross_fixed != 0 and net_fixed != 0:
        checks.append(check_equation(
            "Net fixed assets should equal property/equipment minus accumulated depreciation",
            "netFixedAssets", gross_fixed - num(data, "accumulatedDepreciation"), net_fixed,
            formula="netFixed = propertyEquipment - accumulatedDepreciation",
        ))
    return checks


def _unit_is_occupied(unit: Dict[str, Any]) -> bool:
    status = str(unit.get("status") or "").lower()
    return status == "occupied" or unit.get("occupied") is True or unit.get("vacant") is False or not status


def check_rent_roll(data: Dict[str, Any]) -> List[MathCheck]:
    checks: List[MathCheck] = []
    units = data.get("units") if isinstance(data.get("units"), list) else []
    summary = data.get("summary") or data

    monthly = num(summary, "totalMonthlyRent")
    annual = num(summary, "totalAnnualRent")
    occupancy = num(summary, "occupancyRate")
    total_units = num(summary, "totalUnits") or len(units)
    occupied = num(summary, "occupiedUnits")
    vacant = num(summary, "vacantUnits")

    if units and monthly != 0:
        occupied_rent = sum(
            (num(u, "monthlyRent") or num(u, "rent")) for u in units
            if isinstance(u, dict) and _unit_is_occupied(u)
        )
        checks.append(check_equation(
            "Total monthly rent should equal sum of all occupied unit monthly rents",
            "summary.totalMonthlyRent", occupied_rent, monthly,
            formula="totalMonthlyRent = sum(occupied unit rents)",
        ))

    if monthly != 0 and annual != 0:
        checks.append(check_equation(
            "Total annual rent should equal total monthly rent times 12",
            "summary.totalAnnualRent", monthly * 12, annual,
            formula="totalAnnualRent = totalMonthlyRent * 12",
        ))

    if total_units > 0 and occupancy != 0:
        checks.append(check_ratio(
            "Occupancy rate should equal occupied units divided by total units",
            "summary.occupancyRate", occupied / total_units, occupancy,
            formula="occupancyRate = occupiedUnits / totalUnits",
        ))

    if total_units > 0 and (occupied != 0 or vacant != 0):
        checks.append(check_equation(
            "Occupied units plus vacant units should equal total units",
            "summary.totalUnits", occupied + vacant, total_units, tolerance=0,
            formula="totalUnits = occupiedUnits + vacantUnits",
        ))
    return checks


CHECK_RUNNERS: Dict[str, Callable[[Dict[str, Any]], List[MathCheck]]] = {
    "FORM_1040": check_1040,
    "FORM_1120": check_1120,
    "FORM_1120S": check_1120s,
    "FORM_1065": check_1065,
    "BANK_STATEMENT_CHECKING": check_bank_statement,
    "BANK_STATEMENT_SAVINGS": check_bank_statement,
    "PROFIT_AND_LOSS": check_profit_and_loss,
    "BALANCE_SHEET": check_balance_sheet,
    "RENT_ROLL": check_rent_roll,
}


def run_math_checks(doc_type: Optional[str], data: Optional[Dict[str, Any]]) -> List[MathCheck]:
    """
    Run every math check defined for a document type.

    Unknown document types and empty payloads produce no checks.
    """
    if not data or not isinstance(data, dict):
        return []
    runner = CHECK_RUNNERS.get(normalize_doc_type(doc_type) or "")
    return runner(data) if runner else []
