"""
Regeneration feedback text.

Outstanding findings from a previous version are turned into the
correction block handed to the prose generator.
"""
from typing import Any, Iterable, List, Optional

from dealforge.models.findings import ComplianceIssue, RegulatoryCheck, VerificationFinding


def _as_issue(item: Any) -> ComplianceIssue:
    return item if isinstance(item, ComplianceIssue) else ComplianceIssue.from_dict(item)


def _as_check(item: Any) -> RegulatoryCheck:
    return item if isinstance(item, RegulatoryCheck) else RegulatoryCheck.from_dict(item)


def _as_finding(item: Any) -> VerificationFinding:
    return item if isinstance(item, VerificationFinding) else VerificationFinding.from_dict(item)


def build_feedback_text(
    compliance_issues: Optional[Iterable[Any]] = None,
    failed_checks: Optional[Iterable[Any]] = None,
    verification_findings: Optional[Iterable[Any]] = None,
    notes: Optional[str] = None,
) -> Optional[str]:
    """
    Build structured feedback from previous findings and operator notes.

    Items may be finding dataclasses or their persisted dict form. Passed
    checks are ignored. Returns None when there is nothing to report.
    """
    parts: List[str] = []

    issues = [_as_issue(i) for i in compliance_issues or []]
    if issues:
        parts.append("LEGAL REVIEW ISSUES FROM PREVIOUS VERSION:")
        for issue in issues:
            line = f"- [{issue.severity}] {issue.section}: {issue.description}"
            if issue.recommendation:
                line += f" (Fix: {issue.recommendation})"
            parts.append(line)

    checks = [c for c in (_as_check(c) for c in failed_checks or []) if not c.passed]
    if checks:
        if parts:
            parts.append("")
        parts.append("FAILED COMPLIANCE CHECKS FROM PREVIOUS VERSION:")
        for check in checks:
            line = f"- {check.name}"
            if check.regulation:
                line += f" ({check.regulation})"
            if check.description:
                line += f": {check.description}"
            parts.append(line)

    findings = [_as_finding(f) for f in verification_findings or []]
    if findings:
        if parts:
            parts.append("")
        parts.append("VERIFICATION ISSUES FROM PREVIOUS VERSION:")
        for finding in findings:
            parts.append(f"- [{finding.severity}] {finding.field}: {finding.description}")

    if notes and notes.strip():
        if parts:
            parts.append("")
        parts.append("LOAN OFFICER INSTRUCTIONS:")
        parts.append(notes.strip())

    return "\n".join(parts) if parts else None
