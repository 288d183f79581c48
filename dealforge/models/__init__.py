"""Models package."""
from dealforge.models.audit import AuditLog
from dealforge.models.credit_memo import CreditMemo
from dealforge.models.deal import Deal, DealStatus
from dealforge.models.generated_document import (
    ComplianceStatus,
    DocumentStatus,
    DocumentVersion,
    DocVerificationStatus,
    GeneratedDocument,
)
from dealforge.models.source_document import SourceDocument
from dealforge.models.verification_issue import (
    IssueCheckType,
    IssueSeverity,
    IssueStatus,
    VerificationIssue,
)

__all__ = [
    "AuditLog", "CreditMemo",
    "Deal", "DealStatus",
    "GeneratedDocument", "DocumentVersion", "DocumentStatus",
    "ComplianceStatus", "DocVerificationStatus",
    "SourceDocument",
    "VerificationIssue", "IssueCheckType", "IssueSeverity", "IssueStatus",
]
