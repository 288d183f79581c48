"""
Deal model and lifecycle status.

A deal is one loan request moving through the document pipeline.
"""
import uuid
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, Float, Integer, JSON, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from dealforge.database import Base
from dealforge.models.types import UUID


class DealStatus(str, Enum):
    """Pipeline status of a deal."""
    CREATED = "CREATED"
    UPLOADED = "UPLOADED"
    PROCESSING_OCR = "PROCESSING_OCR"
    CLASSIFYING = "CLASSIFYING"
    EXTRACTING = "EXTRACTING"
    VERIFYING = "VERIFYING"
    RESOLVING = "RESOLVING"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    ANALYZING = "ANALYZING"
    STRUCTURING = "STRUCTURING"
    NEEDS_TERM_REVIEW = "NEEDS_TERM_REVIEW"
    GENERATING_DOCS = "GENERATING_DOCS"
    GENERATING_MEMO = "GENERATING_MEMO"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"


class Deal(Base):
    """Loan deal owned by an organization."""

    __tablename__ = "deals"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(), nullable=False, index=True)

    # Intake
    borrower_name = Column(String(255), nullable=False)
    loan_amount = Column(Float, nullable=False)
    loan_purpose = Column(Text, nullable=True)
    property_state = Column(String(2), nullable=True)
    property_value = Column(Float, nullable=True)
    loan_program = Column(String(50), nullable=True)
    is_commercial = Column(Boolean, default=True, nullable=False)
    requested_term_months = Column(Integer, nullable=True)

    # Lifecycle
    status = Column(SQLEnum(DealStatus), default=DealStatus.CREATED, nullable=False, index=True)
    last_step = Column(String(50), nullable=True)
    error_step = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)

    # Worker claim: refreshed at every stage start, cleared when the run stops
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    claim_token = Column(String(255), nullable=True)

    # Stage outputs
    verification_report = Column(JSON, nullable=True)
    analysis = Column(JSON, nullable=True)
    terms = Column(JSON, nullable=True)
    compliance_review = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    documents = relationship("SourceDocument", back_populates="deal", order_by="SourceDocument.created_at")
    generated_documents = relationship("GeneratedDocument", back_populates="deal")

    def __repr__(self) -> str:
        return f"<Deal {self.id} status={self.status}>"
