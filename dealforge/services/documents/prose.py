"""
Legal prose generation for loan documents.

The generative service writes only the legal language of a document as a
JSON object of named sections. Every number in the prompt comes from the
rules engine and the model is told never to alter or introduce figures;
the renderer places the numbers itself.
"""
from typing import Any, Dict, List, Optional

import structlog

from dealforge.services.llm_client import GenerativeService
from dealforge.services.rules.loan_programs import get_loan_program
from dealforge.services.rules.rules_engine import RulesEngineResult

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a senior commercial lending attorney drafting loan documents for an institutional lender. "
    "NUMBERS ARE SACRED: every amount, rate, fee, term and date is fixed by the lender's rules engine. "
    "Never change a number and never introduce a number that is not in the deal terms. "
    "Draft precise, enforceable legal language that cites the governing statute where one applies. "
    "Respond with a single JSON object containing exactly the requested keys."
)

# Prose sections each document type needs. Keys in ARRAY_KEYS hold lists.
REQUIRED_KEYS: Dict[str, List[str]] = {
    "promissory_note": [
        "defaultProvisions", "accelerationClause", "lateFeeProvision",
        "waiverProvisions", "governingLawClause", "miscellaneousProvisions",
    ],
    "loan_agreement": [
        "recitals", "representations", "eventsOfDefault", "remediesOnDefault",
        "waiverAndAmendment", "noticeProvisions", "miscellaneous", "governingLaw",
    ],
    "security_agreement": [
        "collateralDescription", "perfectionLanguage", "representationsAndWarranties",
        "remediesOnDefault", "dispositionOfCollateral", "governingLaw",
    ],
    "guaranty": [
        "guarantyScope", "waiverOfDefenses", "subrogationWaiver", "subordination", "miscellaneous", "governingLaw",
    ],
    "commitment_letter": [
        "openingParagraph", "conditionsPrecedent", "representationsRequired", "expirationClause", "governingLaw",
    ],
    "environmental_indemnity": [
        "indemnificationScope", "representationsAndWarranties", "covenants",
        "remediationObligations", "survivalClause", "governingLaw",
    ],
    "corporate_resolution": [
        "resolutionRecitals", "authorizationClause", "authorizedSigners",
        "ratificationClause", "certificateOfSecretary", "governingLaw",
    ],
    "ucc_financing_statement": [
        "collateralDescription", "proceedsClause", "filingInstructions", "additionalProvisions",
    ],
    "borrowers_certificate": ["additionalCertifications", "governingLaw"],
    "opinion_letter": ["additionalOpinions", "governingLaw"],
    "deed_of_trust": [
        "grantClause", "borrowerCovenants", "defaultProvisions", "powerOfSale", "environmentalCovenants", "governingLaw",
    ],
    "sba_authorization": ["specialConditions", "useOfProceeds", "governingLaw"],
    "borrowing_base_agreement": [
        "eligibilityCriteria", "advanceRates", "reportingRequirements", "reserveProvisions", "governingLaw",
    ],
}

ARRAY_KEYS = frozenset({
    "conditionsPrecedent", "representationsAndWarranties", "covenants", "representations",
    "eventsOfDefault", "borrowerCovenants", "waiverOfDefenses", "specialConditions",
})

# Fully templated forms: numbers and boilerplate only, no generative prose.
ZERO_PROSE_DOCS = frozenset({
    "settlement_statement", "compliance_certificate", "amortization_schedule",
    "closing_disclosure", "loan_estimate",
    "sba_form_1919", "sba_form_159", "sba_form_148", "sba_form_1050",
    "irs_4506c", "irs_w9", "flood_determination", "privacy_notice",
    "patriot_act_notice", "disbursement_authorization",
})

GENERIC_KEYS = ["generalProvisions", "governingLaw"]

DOC_TYPE_GUIDANCE: Dict[str, str] = {
    "promissory_note": (
        "Draft the promissory note provisions: events of default with cure periods, an acceleration clause "
        "with notice, the late fee provision referencing the stated late fee and grace period, waivers of "
        "presentment and protest, a usury savings clause inside miscellaneousProvisions, and governing law."
    ),
    "loan_agreement": (
        "Draft the loan agreement: recitals, borrower representations (a list), events of default "
        "(a list covering payment, covenant breach, cross-default, insolvency, judgment and change of control), "
        "remedies, amendment and waiver, notices and governing law."
    ),
    "security_agreement": (
        "Draft a UCC Article 9 security agreement. Describe collateral by UCC 9-108 category, reference "
        "perfection by filing under UCC 9-501, and list representations and warranties."
    ),
    "guaranty": (
        "Draft an unconditional guaranty of payment, not collection. waiverOfDefenses is a list of specific "
        "suretyship defenses waived. Include subrogation waiver and subordination of guarantor claims."
    ),
    "commitment_letter": (
        "Draft the commitment letter prose. conditionsPrecedent is a list of closing conditions "
        "drawn from the deal conditions; include an expiration clause."
    ),
    "environmental_indemnity": (
        "Draft an environmental indemnity defining Hazardous Substances per 42 U.S.C. 9601(14) with the "
        "petroleum exclusion and referencing CERCLA 9607(a) liability. representationsAndWarranties and "
        "covenants are lists."
    ),
    "corporate_resolution": (
        "Draft board resolutions authorizing the borrowing, naming authorized signers by title, "
        "ratifying prior acts and a secretary's certificate."
    ),
    "ucc_financing_statement": (
        "Draft the collateral description for a UCC-1 financing statement using UCC 9-108 categories, "
        "a proceeds clause and filing instructions for the filing office under UCC 9-501."
    ),
    "borrowers_certificate": "Draft additional borrower certifications made at closing and governing law.",
    "opinion_letter": "Draft additional customary legal opinions of borrower's counsel and governing law.",
    "deed_of_trust": (
        "Draft deed of trust provisions: grant to trustee, borrower covenants (a list), default provisions, "
        "power of sale under state law and environmental covenants."
    ),
    "sba_authorization": (
        "Draft SBA authorization prose consistent with SBA SOP 50 10. specialConditions is a list; "
        "describe use of proceeds from the loan purpose."
    ),
    "borrowing_base_agreement": (
        "Draft borrowing base provisions: eligibility criteria for receivables and inventory, advance "
        "rate mechanics, monthly reporting requirements and reserve provisions."
    ),
}

_FEEDBACK_HEADER = "=== MANDATORY CORRECTIONS ==="


def placeholder(key: str) -> str:
    return f"[{key}: generation did not produce this section. Manual review required.]"


def _money(value: float) -> str:
    return f"${value:,.2f}"


def build_deal_context(deal, terms: RulesEngineResult) -> str:
    """Every figure the drafter may reference, formatted once."""
    program = get_loan_program(terms.program_id)
    rate = terms.rate
    lines = [
        f"Borrower: {deal.borrower_name}",
        f"Loan program: {program.name if program else terms.program_id}",
        f"Loan purpose: {getattr(deal, 'loan_purpose', None) or 'General business purposes'}",
        f"Governing state: {terms.state or 'Not specified'}",
        f"Principal amount: {_money(terms.approved_amount)}",
        f"Interest rate: {rate.total_rate * 100:.3f}% "
        f"({rate.base_rate_type} {rate.base_rate_value * 100:.3f}% + {rate.spread * 100:.3f}%)",
        f"Term: {terms.term_months} months",
        f"Amortization: {'Interest only' if terms.interest_only else f'{terms.amortization_months} months'}",
        f"Monthly payment: {_money(terms.monthly_payment)}",
        f"LTV: {terms.ltv * 100:.1f}%" if terms.ltv is not None else "LTV: not applicable",
        f"Prepayment penalty: {'Yes' if terms.prepayment_penalty else 'No'}",
        f"Personal guaranty: {'Required' if terms.personal_guaranty else 'Not required'}",
        f"Late fee: {terms.late_fee_percent * 100:.1f}% after {terms.late_fee_grace_days} days",
    ]
    if terms.rate.usury_adjusted:
        lines.append(f"Rate capped at state usury limit: {terms.rate.usury_message}")
    if terms.fees:
        lines.append("Fees:")
        lines.extend(f"  - {f.name}: {_money(f.amount)}" for f in terms.fees)
    if terms.covenants:
        lines.append("Covenants:")
        for c in terms.covenants:
            threshold = f" (threshold: {c['threshold']})" if c.get("threshold") is not None else ""
            lines.append(f"  - {c['name']}: {c['description']}{threshold}")
    if terms.conditions:
        lines.append("Conditions:")
        lines.extend(f"  - [{c.category}] {c.description}" for c in terms.conditions)
    return "\n".join(lines)


def build_prompt(doc_type: str, deal, terms: RulesEngineResult, feedback: Optional[str] = None) -> str:
    keys = REQUIRED_KEYS[doc_type]
    key_spec = ", ".join(f"{k} ({'array of strings' if k in ARRAY_KEYS else 'string'})" for k in keys)
    parts = [
        DOC_TYPE_GUIDANCE.get(doc_type, f"Draft the {doc_type.replace('_', ' ')}."),
        "",
        "DEAL TERMS:",
        build_deal_context(deal, terms),
        "",
        f"Return a JSON object with these keys: {key_spec}.",
    ]
    if terms.program_id == "dscr":
        parts.append(
            "This is a business-purpose investment property loan; state that the loan is not for "
            "personal, family or household purposes."
        )
    if feedback:
        parts.extend(["", _FEEDBACK_HEADER, feedback, "Address every item above in the revised sections."])
    return "\n".join(parts)


def generic_prose(doc_type: str, deal, terms: RulesEngineResult) -> Dict[str, Any]:
    """Boilerplate for document types without a drafting template."""
    title = doc_type.replace("_", " ")
    state = terms.state or "the State in which the Lender is located"
    return {
        "generalProvisions": (
            f"This {title} is delivered by {deal.borrower_name} in connection with the loan described herein "
            "and is subject to the terms of the Loan Agreement between the parties."
        ),
        "governingLaw": (
            f"This {title} shall be governed by the laws of {state}, without regard to its conflict of laws principles."
        ),
    }


def normalize_prose(doc_type: str, raw: Dict[str, Any]) -> Dict[str, Any]:
    """Keep the requested keys, coerce their shapes and fill gaps with placeholders."""
    prose: Dict[str, Any] = {}
    for key in REQUIRED_KEYS.get(doc_type, GENERIC_KEYS):
        value = raw.get(key)
        if key in ARRAY_KEYS:
            if isinstance(value, str):
                value = [value]
            items = [str(v).strip() for v in value or [] if str(v).strip()] if isinstance(value, list) else []
            prose[key] = items or [placeholder(key)]
        else:
            if isinstance(value, list):
                value = "\n".join(str(v) for v in value)
            text = str(value).strip() if value is not None else ""
            prose[key] = text or placeholder(key)
    return prose


class ProseGenerator:
    """Drafts legal prose sections through the generative service."""

    def __init__(self, llm: Optional[GenerativeService] = None):
        self.llm = llm

    def generate(
        self,
        doc_type: str,
        deal,
        terms: RulesEngineResult,
        feedback: Optional[str] = None,
        strict: bool = False,
    ) -> Dict[str, Any]:
        """
        Produce the prose sections for one document.

        With strict=False a provider failure is logged and the sections
        are filled with placeholders; with strict=True it propagates.
        """
        if doc_type in ZERO_PROSE_DOCS:
            return {}
        if doc_type not in REQUIRED_KEYS:
            return generic_prose(doc_type, deal, terms)

        if self.llm is None or not self.llm.is_configured:
            logger.info("prose_generation_skipped", doc_type=doc_type, reason="generative service not configured")
            return normalize_prose(doc_type, {})

        prompt = build_prompt(doc_type, deal, terms, feedback)
        try:
            raw = self.llm.complete_json(prompt, system_prompt=SYSTEM_PROMPT, label=f"prose:{doc_type}")
        except Exception as e:
            if strict:
                raise
            logger.warning("prose_generation_failed", doc_type=doc_type, error=str(e))
            raw = {}

        prose = normalize_prose(doc_type, raw)
        missing = [k for k, v in prose.items() if v == placeholder(k) or v == [placeholder(k)]]
        logger.info(
            "prose_generated",
            doc_type=doc_type,
            sections=len(prose),
            missing=missing,
            had_feedback=bool(feedback),
        )
        return prose
