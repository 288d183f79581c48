"""
Generated document models.

A GeneratedDocument row always describes the current version; every
persisted version is also captured in document_versions so older files
remain downloadable.
"""
import uuid
from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from dealforge.database import Base
from dealforge.models.types import UUID


class DocumentStatus(str, Enum):
    """Lifecycle of a generated document."""
    DRAFT = "DRAFT"
    REVIEWED = "REVIEWED"
    FLAGGED = "FLAGGED"
    REGENERATING = "REGENERATING"
    FINAL = "FINAL"


class ComplianceStatus(str, Enum):
    PASSED = "PASSED"
    FAILED = "FAILED"
    NEEDS_REVIEW = "NEEDS_REVIEW"


class DocVerificationStatus(str, Enum):
    PASSED = "PASSED"
    WARNINGS = "WARNINGS"
    FAILED = "FAILED"


class GeneratedDocument(Base):
    """Current version of a generated loan document."""

    __tablename__ = "generated_documents"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    deal_id = Column(UUID(), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False, index=True)

    doc_type = Column(String(80), nullable=False)
    storage_key = Column(String(500), nullable=False)
    version = Column(Integer, default=1, nullable=False)
    status = Column(SQLEnum(DocumentStatus), default=DocumentStatus.DRAFT, nullable=False)

    compliance_status = Column(SQLEnum(ComplianceStatus), nullable=True)
    compliance_issues = Column(JSON, nullable=True)
    regulatory_checks = Column(JSON, nullable=True)
    verification_status = Column(SQLEnum(DocVerificationStatus), nullable=True)
    verification_issues = Column(JSON, nullable=True)
    compliance_cycles = Column(Integer, default=1, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    deal = relationship("Deal", back_populates="generated_documents")
    versions = relationship(
        "DocumentVersion",
        back_populates="document",
        order_by="DocumentVersion.version",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<GeneratedDocument {self.doc_type} v{self.version} {self.status}>"


class DocumentVersion(Base):
    """Immutable snapshot of one persisted document version."""

    __tablename__ = "document_versions"
    __table_args__ = (UniqueConstraint("document_id", "version", name="uq_document_version"),)

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    document_id = Column(UUID(), ForeignKey("generated_documents.id", ondelete="CASCADE"), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    storage_key = Column(String(500), nullable=False)
    compliance_status = Column(SQLEnum(ComplianceStatus), nullable=True)
    compliance_issues = Column(JSON, nullable=True)
    regulatory_checks = Column(JSON, nullable=True)
    feedback = Column(Text, nullable=True)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    document = relationship("GeneratedDocument", back_populates="versions")
