"""
Verification issue model.

Issues are raised by the review gate and block the pipeline until an
operator resolves each one.
"""
import uuid
from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, Float, ForeignKey, JSON, String, Text
from sqlalchemy.sql import func

from dealforge.database import Base
from dealforge.models.types import UUID


class IssueCheckType(str, Enum):
    """Which check family produced the issue."""
    MATH = "MATH"
    CROSS_DOC = "CROSS_DOC"
    EXTRACTION_DISAGREEMENT = "EXTRACTION_DISAGREEMENT"


class IssueSeverity(str, Enum):
    """Issue severity."""
    FAIL = "FAIL"
    WARN = "WARN"


class IssueStatus(str, Enum):
    """Resolution status."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CORRECTED = "CORRECTED"
    NOTED = "NOTED"


RESOLUTION_STATUSES = {IssueStatus.CONFIRMED, IssueStatus.CORRECTED, IssueStatus.NOTED}


class VerificationIssue(Base):
    """A discrepancy awaiting human resolution."""

    __tablename__ = "verification_issues"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    deal_id = Column(UUID(), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False, index=True)
    source_document_id = Column(UUID(), ForeignKey("source_documents.id", ondelete="SET NULL"), nullable=True)

    check_type = Column(SQLEnum(IssueCheckType), nullable=False)
    field_path = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    expected = Column(JSON, nullable=True)
    actual = Column(JSON, nullable=True)
    difference = Column(Float, nullable=True)
    severity = Column(SQLEnum(IssueSeverity), nullable=False)
    status = Column(SQLEnum(IssueStatus), default=IssueStatus.PENDING, nullable=False, index=True)

    # Resolution
    resolved_by = Column(String(255), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolution_note = Column(Text, nullable=True)
    corrected_value = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<VerificationIssue {self.check_type} {self.field_path} {self.status}>"
