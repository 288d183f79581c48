"""Uploaded source document and its extraction payloads."""
import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, JSON, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from dealforge.database import Base
from dealforge.models.types import UUID


class SourceDocument(Base):
    """A borrower-supplied file attached to a deal."""

    __tablename__ = "source_documents"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    deal_id = Column(UUID(), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False, index=True)

    file_name = Column(String(255), nullable=False)
    storage_key = Column(String(500), nullable=False)

    # Classification
    doc_type = Column(String(50), nullable=True)
    classification_confidence = Column(Float, nullable=True)

    # Extraction
    ocr_text = Column(Text, nullable=True)
    textract_extraction = Column(JSON, nullable=True)  # {"key_values": {...}, "tables": [...], "fields": {...}}
    ai_extraction = Column(JSON, nullable=True)
    structured_data = Column(JSON, nullable=True)  # merged record
    reconciliation = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    deal = relationship("Deal", back_populates="documents")

    def __repr__(self) -> str:
        return f"<SourceDocument {self.file_name} type={self.doc_type}>"
