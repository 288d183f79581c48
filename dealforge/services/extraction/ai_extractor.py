"""
Generative structured extraction.

Sends the OCR text, key-value pairs and tables to the generative service
with a per-document-type schema and coerces the answer back into numbers.
The result is the secondary extraction; it is never trusted until it has
been reconciled and verified.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from dealforge.services.extraction.ocr import OCRResult
from dealforge.services.extraction.values import is_number, parse_dollar_amount

logger = structlog.get_logger(__name__)

# Skeletons for the prompt. None marks a numeric field, "" a text field,
# and a one-element list the shape of each row.
EXTRACTION_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "FORM_1040": {
        "metadata": {"taxYear": None, "filingStatus": "", "taxpayerName": ""},
        "income": {
            "wages_line1": None, "taxableInterest_line2b": None, "ordinaryDividends_line3b": None,
            "taxableIra_line4b": None, "taxablePensions_line5b": None,
            "taxableSocialSecurity_line6b": None, "capitalGain_line7": None,
            "otherIncome_line8": None, "totalIncome_line9": None, "adjustments_line10": None,
            "agi_line11": None, "standardOrItemized_line12": None, "qbi_line13a": None,
            "totalDeductions_line14": None, "taxableIncome_line15": None,
        },
        "tax": {
            "totalTax_line24": None, "federalWithholding_line25a": None,
            "totalPayments_line33": None, "overpaid_line34": None, "amountOwed_line37": None,
        },
        "scheduleC": [{
            "businessName": "", "grossReceipts_line1": None, "cogs_line4": None,
            "grossProfit_line5": None, "otherIncome_line6": None, "grossIncome_line7": None,
            "totalExpenses_line28": None, "netProfit_line31": None,
            "expenses": {"depreciation_line13": None, "interestMortgage": None, "interestOther": None,
                         "wages": None, "rent": None, "otherExpenses": None},
        }],
        "scheduleE": {
            "properties": [{"address": "", "rentsReceived": None, "totalExpenses": None,
                            "depreciation": None, "mortgageInterest": None, "netRentalIncome": None}],
            "partII": {"totalPartnershipIncome": None},
        },
    },
    "FORM_1120": {
        "metadata": {"taxYear": None, "corporationName": ""},
        "income": {
            "grossReceipts_line1a": None, "returnsAllowances_line1b": None,
            "balanceAfterReturns_line1c": None, "costOfGoodsSold_line2": None,
            "grossProfit_line3": None, "dividendsReceived_line4": None, "interestIncome_line5": None,
            "grossRents_line6": None, "grossRoyalties_line7": None, "capitalGainNet_line8": None,
            "netGainForm4797_line9": None, "otherIncome_line10": None, "totalIncome_line11": None,
        },
        "deductions": {"compensationOfOfficers_line12": None, "interest_line18": None,
                       "depreciation_line20": None, "totalDeductions_line27": None},
        "taxableIncome": {"taxableIncomeBeforeNOL_line28": None, "netOperatingLossDeduction_line29a": None,
                          "totalSpecialDeductions_line29c": None, "taxableIncome_line30": None},
        "scheduleL": {"endOfYear": {"cash": None, "totalAssets": None, "totalLiabilities": None,
                                    "totalEquity": None, "totalLiabilitiesAndEquity": None}},
    },
    "FORM_1120S": {
        "metadata": {"taxYear": None, "corporationName": ""},
        "income": {
            "grossReceipts_line1a": None, "returnsAllowances_line1b": None,
            "balanceAfterReturns_line1c": None, "costOfGoodsSold_line2": None,
            "grossProfit_line3": None, "netGainForm4797_line4": None, "otherIncome_line5": None,
            "totalIncome_line6": None,
        },
        "deductions": {"compensationOfOfficers_line7": None, "interest_line13": None,
                       "depreciation_line14": None, "totalDeductions_line21": None},
        "ordinaryBusinessIncome_line22": None,
        "scheduleK": {"distributions": None},
        "scheduleL": {"endOfYear": {"cash": None, "totalAssets": None, "totalLiabilities": None,
                                    "totalEquity": None, "totalLiabilitiesAndEquity": None}},
    },
    "FORM_1065": {
        "metadata": {"taxYear": None, "partnershipName": ""},
        "income": {
            "grossReceipts_line1a": None, "returnsAllowances_line1b": None, "netReceipts_line1c": None,
            "costOfGoodsSold_line2": None, "grossProfit_line3": None,
            "ordinaryIncomeFromOtherPartnerships_line4": None, "netFarmProfit_line5": None,
            "netGainForm4797_line6": None, "otherIncome_line7": None, "totalIncome_line8": None,
        },
        "deductions": {"guaranteedPaymentsToPartners_line10": None, "interest_line15": None,
                       "depreciation_line16a": None, "totalDeductions_line22": None},
        "ordinaryBusinessIncome_line23": None,
        "partners": [{"name": "", "profitSharePercent": None, "lossSharePercent": None}],
        "scheduleK": {"incomeAndLoss": {"totalGuaranteedPayments_line4c": None}},
    },
    "W2": {
        "metadata": {"taxYear": None, "employerName": "", "employeeName": ""},
        "wagesTips": None, "federalWithholding": None, "socialSecurityWages": None, "medicareWages": None,
    },
    "SCHEDULE_K1": {
        "metadata": {"taxYear": None, "entityName": "", "partnerName": ""},
        "ordinaryIncome": None, "guaranteedPayments": None, "distributions": None,
        "ownershipPercent": None,
    },
    "BANK_STATEMENT_CHECKING": {
        "metadata": {"bankName": "", "accountHolder": ""},
        "statementPeriod": {"startDate": "", "endDate": ""},
        "summary": {"beginningBalance": None, "totalDeposits": None, "totalWithdrawals": None,
                    "totalFees": None, "endingBalance": None, "averageDailyBalance": None,
                    "minimumBalance": None, "nsfCount": None},
        "deposits": [{"date": "", "description": "", "amount": None}],
        "withdrawals": [{"date": "", "description": "", "amount": None}],
    },
    "PROFIT_AND_LOSS": {
        "metadata": {"businessName": "", "periodStart": "", "periodEnd": ""},
        "netRevenue": None, "costOfGoodsSold": None, "grossProfit": None, "grossMargin": None,
        "operatingExpenses": None, "operatingIncome": None, "otherIncomeExpense": None,
        "incomeTaxExpense": None, "netIncome": None,
        "revenueLineItems": [{"category": "", "amount": None}],
        "operatingExpenseLineItems": [{"category": "", "amount": None}],
        "addBacks": {"depreciation": None, "amortization": None, "interest": None,
                     "ownerCompensation": None, "totalAddBacks": None, "adjustedNetIncome": None},
    },
    "BALANCE_SHEET": {
        "metadata": {"businessName": "", "asOfDate": ""},
        "totalCurrentAssets": None, "propertyEquipment": None, "accumulatedDepreciation": None,
        "netFixedAssets": None, "otherAssets": None, "totalAssets": None,
        "totalCurrentLiabilities": None, "totalLongTermLiabilities": None, "totalLiabilities": None,
        "retainedEarnings": None, "priorRetainedEarnings": None, "totalEquity": None,
        "totalLiabilitiesAndEquity": None,
    },
    "RENT_ROLL": {
        "metadata": {"propertyName": "", "asOfDate": ""},
        "units": [{"unit": "", "tenant": "", "status": "", "monthlyRent": None}],
        "summary": {"totalUnits": None, "occupiedUnits": None, "vacantUnits": None,
                    "occupancyRate": None, "totalMonthlyRent": None, "totalAnnualRent": None},
    },
}
EXTRACTION_SCHEMAS["BANK_STATEMENT_SAVINGS"] = EXTRACTION_SCHEMAS["BANK_STATEMENT_CHECKING"]

EXTRACTION_PROMPT = """You are a financial data extraction specialist. Extract the data from this {label} document.

Return a JSON object with this EXACT structure. Use null for any field you cannot find or read.
Use numbers only for amounts (no dollar signs, commas or text). Negative numbers use a minus sign.
Repeat list entries as many times as the document has rows.

{schema}

=== RAW TEXT FROM DOCUMENT ===
{raw_text}

=== KEY-VALUE PAIRS DETECTED ===
{key_values}

=== TABLES DETECTED ===
{tables}
"""


@dataclass
class ExtractionResult:
    structured_data: Dict[str, Any]
    validation_errors: List[Dict[str, str]] = field(default_factory=list)
    method: str = "generative"


def build_key_value_summary(ocr: OCRResult) -> str:
    """Key-value pairs grouped by page."""
    lines: List[str] = []
    for page in sorted({kv.page for kv in ocr.key_values}):
        lines.append(f"--- Page {page} ---")
        lines.extend(
            f'  "{kv.key}": "{kv.value}" (confidence: {kv.confidence * 100:.1f}%)'
            for kv in ocr.key_values if kv.page == page
        )
    return "\n".join(lines)


def _build_tables_text(ocr: OCRResult) -> str:
    blocks = []
    for i, table in enumerate(ocr.tables, start=1):
        rows = "\n".join(" | ".join(f'"{cell}"' for cell in row) for row in table.rows)
        blocks.append(f"Table {i} (Page {table.page}):\n{rows}")
    return "\n".join(blocks)


def coerce_to_schema(data: Any, schema: Any, path: str = "", errors: Optional[List[Dict[str, str]]] = None) -> Any:
    """
    Coerce numeric fields of a response into floats.

    Keys not in the schema are kept as-is. Numeric fields that cannot be
    parsed become None and are reported in errors.
    """
    if errors is None:
        errors = []
    if isinstance(schema, dict) and isinstance(data, dict):
        result = {}
        for key, value in data.items():
            child_path = f"{path}.{key}" if path else key
            result[key] = coerce_to_schema(value, schema[key], child_path, errors) if key in schema else value
        return result
    if isinstance(schema, list) and isinstance(data, list):
        row_schema = schema[0] if schema else None
        return [coerce_to_schema(item, row_schema, f"{path}[{i}]", errors) for i, item in enumerate(data)]
    if schema is None and data is not None and not is_number(data):
        parsed = parse_dollar_amount(data)
        if parsed is None:
            errors.append({"path": path, "message": f"Expected a number, got {data!r}"})
        return parsed
    return data


class AIExtractor:
    """Structured extraction through the generative service."""

    MAX_TEXT_CHARS = 60000

    def __init__(self, llm):
        self.llm = llm

    def extract(self, doc_type: str, ocr: OCRResult) -> ExtractionResult:
        """
        Extract a structured payload for one classified document.

        Raises:
            ExternalServiceError: provider failures from the generative service.
        """
        schema = EXTRACTION_SCHEMAS.get(doc_type)
        if schema is None:
            return ExtractionResult(
                structured_data={},
                validation_errors=[{"path": "_root", "message": f"No extraction schema for {doc_type}"}],
            )

        prompt = EXTRACTION_PROMPT.format(
            label=doc_type.replace("_", " ").title(),
            schema=json.dumps(schema, indent=2),
            raw_text=ocr.raw_text[: self.MAX_TEXT_CHARS],
            key_values=build_key_value_summary(ocr),
            tables=_build_tables_text(ocr),
        )

        try:
            parsed = self.llm.complete_json(prompt, max_tokens=8000, label=f"extract_{doc_type.lower()}")
        except ValueError as e:
            logger.warning("extraction_response_unparseable", doc_type=doc_type, error=str(e))
            return ExtractionResult(
                structured_data={},
                validation_errors=[{"path": "_root", "message": f"Unparseable response: {e}"}],
            )

        errors: List[Dict[str, str]] = []
        data = coerce_to_schema(parsed, schema, errors=errors)
        logger.info("ai_extraction_completed", doc_type=doc_type, validation_errors=len(errors))
        return ExtractionResult(structured_data=data, validation_errors=errors)
