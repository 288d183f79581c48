"""Credit memo model."""
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.sql import func

from dealforge.database import Base
from dealforge.models.types import UUID


class CreditMemo(Base):
    """Underwriting memo generated at the end of the pipeline."""

    __tablename__ = "credit_memos"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    deal_id = Column(UUID(), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False, index=True)
    version = Column(Integer, default=1, nullable=False)
    storage_key = Column(String(500), nullable=False)
    sections = Column(JSON, nullable=True)
    # sha256 of the terms and analysis the memo was rendered from
    inputs_fingerprint = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
