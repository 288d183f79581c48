"""
Audit log model.

Append-only record of operator and pipeline actions.
"""
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import Column, DateTime, Index, JSON, String
from sqlalchemy.sql import func

from dealforge.database import Base
from dealforge.models.types import UUID


class AuditLog(Base):
    """Audit log entry."""

    __tablename__ = "audit_logs"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    organization_id = Column(String(64), nullable=True, index=True)
    actor_id = Column(String(255), nullable=True, index=True)
    action = Column(String(100), nullable=False, index=True)
    target = Column(String(255), nullable=True)
    extra_data = Column(JSON, nullable=True)  # 'metadata' is reserved by SQLAlchemy
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        Index("ix_audit_logs_org_created", "organization_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.target}>"

    @classmethod
    def create_entry(
        cls,
        action: str,
        organization_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        target: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "AuditLog":
        """Factory method to create an audit log entry."""
        return cls(
            action=action,
            organization_id=str(organization_id) if organization_id else None,
            actor_id=str(actor_id) if actor_id else None,
            target=target,
            extra_data=metadata or {},
        )
