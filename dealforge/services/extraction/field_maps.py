"""
Label tables mapping printed document labels onto structured field paths.

Used in two directions: the field mapper turns OCR key-value pairs into a
structured payload, and the OCR comparison checks a structured payload
against the key-value pairs it should have come from.
"""
import re
from functools import lru_cache
from typing import Dict, Iterable, Optional, Pattern, Tuple

# Per document type: field path -> printed labels.
# Schedule paths use the first list position; comparisons strip indexes.
FORM_FIELD_LABELS: Dict[str, Dict[str, Tuple[str, ...]]] = {
    "FORM_1040": {
        "income.wages_line1": ("Wages, salaries, tips", "Line 1"),
        "income.taxableInterest_line2b": ("Taxable interest", "Line 2b"),
        "income.ordinaryDividends_line3b": ("Ordinary dividends", "Line 3b"),
        "income.capitalGain_line7": ("Capital gain or (loss)", "Line 7"),
        "income.otherIncome_line8": ("Other income", "Line 8"),
        "income.totalIncome_line9": ("Total income", "Line 9"),
        "income.adjustments_line10": ("Adjustments to income", "Line 10"),
        "income.agi_line11": ("Adjusted gross income", "Line 11"),
        "income.standardOrItemized_line12": ("Standard deduction or itemized", "Line 12"),
        "income.qbi_line13a": ("Qualified business income", "Line 13a"),
        "income.totalDeductions_line14": ("Total deductions", "Line 14"),
        "income.taxableIncome_line15": ("Taxable income", "Line 15"),
        "tax.totalTax_line24": ("Total tax", "Line 24"),
        "tax.federalWithholding_line25a": ("Federal income tax withheld", "Line 25a"),
        "tax.totalPayments_line33": ("Total payments", "Line 33"),
        "scheduleC[0].grossReceipts_line1": ("Gross receipts or sales",),
        "scheduleC[0].grossProfit_line5": ("Gross profit",),
        "scheduleC[0].grossIncome_line7": ("Gross income",),
        "scheduleC[0].totalExpenses_line28": ("Total expenses before expenses for business use",),
        "scheduleC[0].netProfit_line31": ("Net profit or (loss)",),
    },
    "FORM_1120": {
        "income.grossReceipts_line1a": ("Gross receipts or sales", "Line 1a"),
        "income.returnsAllowances_line1b": ("Returns and allowances", "Line 1b"),
        "income.balanceAfterReturns_line1c": ("Balance. Subtract line 1b", "Line 1c"),
        "income.costOfGoodsSold_line2": ("Cost of goods sold", "Line 2"),
        "income.grossProfit_line3": ("Gross profit", "Line 3"),
        "income.totalIncome_line11": ("Total income", "Line 11"),
        "deductions.totalDeductions_line27": ("Total deductions", "Line 27"),
        "taxableIncome.taxableIncomeBeforeNOL_line28": ("Taxable income before net operating loss", "Line 28"),
        "taxableIncome.taxableIncome_line30": ("Taxable income", "Line 30"),
    },
    "FORM_1120S": {
        "income.grossReceipts_line1a": ("Gross receipts or sales", "Line 1a"),
        "income.returnsAllowances_line1b": ("Returns and allowances", "Line 1b"),
        "income.balanceAfterReturns_line1c": ("Balance. Subtract line 1b", "Line 1c"),
        "income.costOfGoodsSold_line2": ("Cost of goods sold", "Line 2"),
        "income.grossProfit_line3": ("Gross profit", "Line 3"),
        "income.totalIncome_line6": ("Total income (loss)", "Line 6"),
        "deductions.compensationOfOfficers_line7": ("Compensation of officers", "Line 7"),
        "deductions.totalDeductions_line21": ("Total deductions", "Line 21"),
        "ordinaryBusinessIncome_line22": ("Ordinary business income", "Line 22"),
    },
    "FORM_1065": {
        "income.grossReceipts_line1a": ("Gross receipts or sales", "Line 1a"),
        "income.returnsAllowances_line1b": ("Returns and allowances", "Line 1b"),
        "income.netReceipts_line1c": ("Balance. Subtract line 1b", "Line 1c"),
        "income.costOfGoodsSold_line2": ("Cost of goods sold", "Line 2"),
        "income.grossProfit_line3": ("Gross profit", "Line 3"),
        "income.totalIncome_line8": ("Total income (loss)", "Line 8"),
        "deductions.guaranteedPaymentsToPartners_line10": ("Guaranteed payments to partners", "Line 10"),
        "deductions.totalDeductions_line22": ("Total deductions", "Line 22"),
        "ordinaryBusinessIncome_line23": ("Ordinary business income", "Line 23"),
    },
    "W2": {
        "wagesTips": ("Wages, tips, other compensation", "Box 1"),
        "federalWithholding": ("Federal income tax withheld", "Box 2"),
        "socialSecurityWages": ("Social security wages", "Box 3"),
        "medicareWages": ("Medicare wages and tips", "Box 5"),
    },
    "SCHEDULE_K1": {
        "ordinaryIncome": ("Ordinary business income", "Box 1"),
        "guaranteedPayments": ("Guaranteed payments",),
        "distributions": ("Distributions",),
    },
    "PROFIT_AND_LOSS": {
        "netRevenue": ("Total revenue", "Net revenue", "Gross revenue", "Total sales", "Total income"),
        "costOfGoodsSold": ("Cost of goods sold", "COGS", "Cost of sales", "Total cost of goods sold"),
        "grossProfit": ("Gross profit",),
        "operatingExpenses": ("Total operating expenses", "Operating expenses", "Total expenses"),
        "operatingIncome": ("Operating income", "Income from operations"),
        "incomeTaxExpense": ("Income tax expense", "Income taxes"),
        "netIncome": ("Net income", "Net profit", "Net earnings"),
    },
    "BALANCE_SHEET": {
        "totalCurrentAssets": ("Total current assets",),
        "netFixedAssets": ("Net fixed assets", "Net property and equipment"),
        "propertyEquipment": ("Property and equipment", "Gross fixed assets"),
        "accumulatedDepreciation": ("Accumulated depreciation", "Less accumulated depreciation"),
        "otherAssets": ("Total other assets", "Other assets"),
        "totalAssets": ("Total assets",),
        "totalCurrentLiabilities": ("Total current liabilities",),
        "totalLongTermLiabilities": ("Total long-term liabilities", "Total long term liabilities"),
        "totalLiabilities": ("Total liabilities",),
        "retainedEarnings": ("Retained earnings",),
        "totalEquity": ("Total equity", "Total shareholders equity", "Total stockholders equity"),
        "totalLiabilitiesAndEquity": ("Total liabilities and equity", "Total liabilities & equity"),
    },
    "BANK_STATEMENT_CHECKING": {
        "summary.beginningBalance": ("Beginning balance", "Opening balance", "Previous balance"),
        "summary.totalDeposits": ("Total deposits", "Deposits and additions", "Total credits"),
        "summary.totalWithdrawals": ("Total withdrawals", "Total debits", "Withdrawals and subtractions"),
        "summary.totalFees": ("Total fees", "Service fees"),
        "summary.endingBalance": ("Ending balance", "Closing balance", "New balance"),
    },
    "RENT_ROLL": {
        "summary.totalUnits": ("Total units",),
        "summary.occupiedUnits": ("Occupied units",),
        "summary.vacantUnits": ("Vacant units",),
        "summary.occupancyRate": ("Occupancy rate", "Occupancy"),
        "summary.totalMonthlyRent": ("Total monthly rent", "Monthly rent total"),
        "summary.totalAnnualRent": ("Total annual rent", "Annual rent total"),
    },
}
FORM_FIELD_LABELS["BANK_STATEMENT_SAVINGS"] = FORM_FIELD_LABELS["BANK_STATEMENT_CHECKING"]

# Label phrases for documents with no standard layout, matched against
# the last segment of a field path.
FUZZY_MAP: Tuple[Tuple[Tuple[str, ...], Tuple[str, ...]], ...] = (
    (("total deposits", "deposits total"), ("totaldeposits",)),
    (("total withdrawals", "withdrawals total", "total debits"), ("totalwithdrawals",)),
    (("beginning balance", "opening balance", "previous balance"), ("beginningbalance",)),
    (("ending balance", "closing balance", "new balance"), ("endingbalance",)),
    (("gross profit", "gross margin"), ("grossprofit",)),
    (("net income", "net profit", "net earnings"), ("netincome",)),
    (("operating income", "income from operations"), ("operatingincome",)),
    (("total revenue", "net revenue", "gross revenue", "total sales"),
     ("netrevenue", "totalrevenue", "grossrevenue", "revenue")),
    (("cost of goods sold", "cogs", "cost of sales"), ("costofgoodssold", "cogs", "cogstotal")),
    (("operating expenses", "total operating expenses"), ("operatingexpenses", "totaloperatingexpenses")),
    (("total assets",), ("totalassets",)),
    (("total liabilities",), ("totalliabilities",)),
    (("total equity", "shareholders equity", "stockholders equity"), ("totalequity", "totalshareholdersequity")),
    (("total current assets",), ("totalcurrentassets",)),
    (("total current liabilities",), ("totalcurrentliabilities",)),
    (("total liabilities and equity", "total liabilities & equity"), ("totalliabilitiesandequity",)),
    (("retained earnings",), ("retainedearnings",)),
    (("accumulated depreciation",), ("accumulateddepreciation",)),
    (("total monthly rent", "monthly rent total"), ("totalmonthlyrent",)),
    (("total annual rent", "annual rent total"), ("totalannualrent",)),
    (("occupancy rate", "occupancy"), ("occupancyrate",)),
    (("total units",), ("totalunits",)),
)

_INDEX_SUFFIX_RE = re.compile(r"\[\d+\]")


def normalize_key(value: str) -> str:
    """Lowercase and strip everything but letters and digits."""
    return re.sub(r"[^a-z0-9]", "", value.lower())


def strip_indexes(path: str) -> str:
    """"scheduleC[1].netProfit_line31" -> "scheduleC.netProfit_line31"."""
    return _INDEX_SUFFIX_RE.sub("", path)


@lru_cache(maxsize=512)
def label_pattern(label: str) -> Pattern:
    """
    Compile a printed label into a word-bounded pattern.

    "Line 1" matches "Line 1 Wages" but not "Line 12" or "Line 1a";
    punctuation and spacing between words are ignored.
    """
    words = re.findall(r"[a-z0-9]+", label.lower())
    body = r"[^a-z0-9]*".join(re.escape(w) for w in words)
    return re.compile(rf"(?<![a-z0-9]){body}(?![a-z0-9])")


def label_matches(key: str, label: str) -> bool:
    return bool(label_pattern(label).search(key.lower()))


def labels_for(doc_type: Optional[str], path: str) -> Tuple[str, ...]:
    """Printed labels for a field path, ignoring list positions."""
    table = FORM_FIELD_LABELS.get(doc_type or "", {})
    wanted = strip_indexes(path)
    for field_path, labels in table.items():
        if strip_indexes(field_path) == wanted:
            return labels
    return ()


def fuzzy_match_key(key: str, path: str, doc_type: Optional[str] = None) -> bool:
    """
    Whether an OCR key could be the label of a structured field.

    Tries the form label table for the document type, then the fuzzy
    phrase table, then a direct match on the last path segment.
    """
    if any(label_matches(key, label) for label in labels_for(doc_type, path)):
        return True

    normalized_key = normalize_key(key)
    tail = normalize_key(strip_indexes(path).split(".")[-1])
    if not normalized_key or not tail:
        return False

    for phrases, field_patterns in FUZZY_MAP:
        phrase_hit = any(label_matches(key, p) for p in phrases)
        field_hit = any(p in tail or tail in p for p in field_patterns)
        if phrase_hit and field_hit:
            return True

    if len(tail) >= 4 and tail in normalized_key:
        return True
    if len(normalized_key) >= 4 and normalized_key in tail:
        return True
    return False


def best_label_match(key: str, table: Dict[str, Iterable[str]]) -> Optional[str]:
    """
    The field path whose matching label is most specific for this key.

    "Total liabilities and equity" goes to totalLiabilitiesAndEquity, not
    totalLiabilities, because the longer label wins.
    """
    best_path = None
    best_length = 0
    for path, labels in table.items():
        for label in labels:
            if len(label) > best_length and label_matches(key, label):
                best_path = path
                best_length = len(label)
    return best_path
