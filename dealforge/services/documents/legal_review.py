"""
Generative legal review of drafted prose.

A second, independent call reviews the drafted sections against a
per-document checklist, returns issues and corrected sections, and
reports each checklist provision. Corrections are only applied to
sections that already exist. Any failure of the review itself yields a
single critical issue so the document is never silently approved.
"""
from dataclasses import dataclass, field
import json
from typing import Any, Dict, List, Optional

import structlog

from dealforge.models.findings import ComplianceIssue, RegulatoryCheck
from dealforge.services.documents.prose import build_deal_context
from dealforge.services.llm_client import GenerativeService
from dealforge.services.rules.rules_engine import RulesEngineResult

logger = structlog.get_logger(__name__)

REVIEW_SYSTEM_PROMPT = (
    "You are a senior bank regulatory compliance officer reviewing draft loan document prose. "
    "Flag genuine legal deficiencies only: enforceability defects, regulatory non-compliance, missing required "
    "provisions or figures that contradict the deal terms. Rewrite affected sections completely. "
    "Never change any number; flag a wrong number without altering it. "
    "Respond only with JSON: {\"issues_found\": [{\"severity\": \"critical|warning|info\", \"section\": str, "
    "\"description\": str, \"fix_applied\": str}], \"corrected_sections\": {key: text}, "
    "\"checklist_results\": [{\"provision\": str, \"category\": \"required|standard|regulatory\", "
    "\"passed\": bool, \"note\": str}]}"
)

SEVERITIES = frozenset({"critical", "warning", "info"})

CHECKLISTS: Dict[str, Dict[str, List[str]]] = {
    "promissory_note": {
        "required": [
            "Default provisions (what constitutes an event of default)",
            "Acceleration clause (entire balance due upon default)",
            "Late fee provision (amount/percentage and grace period)",
            "Governing law clause",
        ],
        "standard": [
            "Usury savings clause (rate shall not exceed maximum permitted by law)",
            "Waiver of presentment, demand, and protest",
        ],
        "regulatory": ["State usury limits (interest rate must not exceed state maximum)"],
    },
    "loan_agreement": {
        "required": [
            "Representations and warranties",
            "Events of default (payment, covenant breach, cross-default, insolvency)",
            "Remedies upon default (acceleration, set-off, enforcement rights)",
            "Governing law clause",
        ],
        "standard": ["Notice provisions", "Amendment and waiver requirements", "Severability clause"],
        "regulatory": ["ECOA/Reg B non-discrimination", "TILA disclosures if consumer purpose"],
    },
    "security_agreement": {
        "required": [
            "Collateral description using UCC 9-108 categories",
            "Perfection by filing under UCC 9-501",
            "Remedies upon default under UCC 9-610",
        ],
        "standard": ["Representations about title and liens"],
        "regulatory": ["UCC Article 9 commercially reasonable disposition"],
    },
    "guaranty": {
        "required": [
            "Guaranty of payment, not collection",
            "Specific waiver of suretyship defenses",
            "Governing law clause",
        ],
        "standard": ["Subrogation waiver until paid in full", "Subordination of guarantor claims"],
        "regulatory": ["ECOA/Reg B spousal signature limits"],
    },
    "environmental_indemnity": {
        "required": [
            "Hazardous Substances defined per CERCLA 42 U.S.C. 9601(14)",
            "Indemnification scope covering remediation costs",
            "Survival after repayment or foreclosure",
        ],
        "standard": ["Remediation obligations and timelines"],
        "regulatory": ["CERCLA 9607(a) liability standard", "RCRA compliance covenant"],
    },
    "deed_of_trust": {
        "required": ["Grant to trustee with power of sale", "Default provisions", "Governing law clause"],
        "standard": ["Insurance and tax escrow covenants"],
        "regulatory": ["State foreclosure notice requirements"],
    },
}

_REGULATION_KEYWORDS = (
    ("ucc", "UCC Article 9"),
    ("cercla", "CERCLA"),
    ("rcra", "RCRA"),
    ("tila", "TILA/Reg Z"),
    ("ecoa", "ECOA/Reg B"),
    ("respa", "RESPA"),
    ("bankruptcy", "Bankruptcy Code"),
    ("usury", "State usury law"),
)


def extract_regulation(provision: str) -> str:
    lower = provision.lower()
    for keyword, regulation in _REGULATION_KEYWORDS:
        if keyword in lower:
            return regulation
    return "Commercial Lending Standards"


@dataclass
class LegalReview:
    passed: bool
    issues: List[ComplianceIssue] = field(default_factory=list)
    checks: List[RegulatoryCheck] = field(default_factory=list)
    prose: Dict[str, Any] = field(default_factory=dict)
    corrections_applied: int = 0


def _system_failure(prose: Dict[str, Any]) -> LegalReview:
    return LegalReview(
        passed=False,
        issues=[ComplianceIssue(
            "critical", "system",
            "Legal review could not be completed due to a system error.",
            "Retry the review or have counsel review this document manually",
        )],
        prose=prose,
    )


def build_review_prompt(doc_type: str, deal, terms: RulesEngineResult, prose: Dict[str, Any]) -> str:
    parts = [
        f"DOCUMENT TYPE: {doc_type}",
        "",
        "DEAL TERMS:",
        build_deal_context(deal, terms),
        "",
        "DRAFT SECTIONS (JSON):",
        json.dumps(prose, indent=2),
    ]
    checklist = CHECKLISTS.get(doc_type)
    if checklist:
        parts.extend(["", "VERIFICATION CHECKLIST:"])
        for category, provisions in checklist.items():
            parts.extend(f"- [{category}] {p}" for p in provisions)
    return "\n".join(parts)


def parse_review(raw: Dict[str, Any], prose: Dict[str, Any]) -> LegalReview:
    """Turn the reviewer's JSON into findings and apply its corrections."""
    issues: List[ComplianceIssue] = []
    for item in raw.get("issues_found") or []:
        if not isinstance(item, dict):
            continue
        severity = str(item.get("severity", "warning")).lower()
        issues.append(ComplianceIssue(
            severity=severity if severity in SEVERITIES else "warning",
            section=str(item.get("section", "")),
            description=str(item.get("description", "")),
            recommendation=item.get("fix_applied") or None,
        ))

    corrected = dict(prose)
    applied = 0
    corrections = raw.get("corrected_sections") or {}
    if isinstance(corrections, dict):
        for key, text in corrections.items():
            if key not in corrected or text is None:
                continue
            if isinstance(corrected[key], list):
                corrected[key] = text if isinstance(text, list) else [str(text)]
            else:
                corrected[key] = "\n".join(text) if isinstance(text, list) else str(text)
            applied += 1

    checks: List[RegulatoryCheck] = []
    for item in raw.get("checklist_results") or []:
        if not isinstance(item, dict):
            continue
        provision = str(item.get("provision", ""))
        passed = bool(item.get("passed", False))
        category = str(item.get("category") or "legal")
        checks.append(RegulatoryCheck(
            name=provision,
            regulation=extract_regulation(provision),
            category=category,
            passed=passed,
            description=str(item.get("note", "")),
            severity="info" if passed else ("critical" if category == "required" else "warning"),
        ))

    has_critical = any(i.severity == "critical" for i in issues)
    passed = not has_critical or applied > 0
    return LegalReview(passed=passed, issues=issues, checks=checks, prose=corrected, corrections_applied=applied)


class LegalReviewer:
    """Runs the generative legal review for one document."""

    def __init__(self, llm: Optional[GenerativeService] = None):
        self.llm = llm

    def review(self, doc_type: str, deal, terms: RulesEngineResult, prose: Dict[str, Any]) -> LegalReview:
        if not prose:
            return LegalReview(passed=True, prose=prose)

        if self.llm is None or not self.llm.is_configured:
            logger.info("legal_review_skipped", doc_type=doc_type, reason="generative service not configured")
            return LegalReview(
                passed=True,
                issues=[ComplianceIssue(
                    "warning", "system", "Legal review was not run; generative service is not configured.",
                    "Have counsel review this document before closing",
                )],
                prose=prose,
            )

        try:
            raw = self.llm.complete_json(
                build_review_prompt(doc_type, deal, terms, prose),
                system_prompt=REVIEW_SYSTEM_PROMPT,
                label=f"legal_review:{doc_type}",
            )
            result = parse_review(raw, prose)
        except Exception as e:
            logger.error("legal_review_failed", doc_type=doc_type, error=str(e))
            return _system_failure(prose)

        logger.info(
            "legal_review_completed",
            doc_type=doc_type,
            passed=result.passed,
            issues=len(result.issues),
            corrections=result.corrections_applied,
        )
        return result
