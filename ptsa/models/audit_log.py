from sqlalchemy import JSON, Column, DateTime, Index, Integer, String

from ptsa.database import Base
from ptsa.utils.dates import utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(100), nullable=False)
    user_id = Column(String(255), nullable=True)
    target_id = Column(String(255), nullable=True)
    resource_type = Column(String(100), nullable=True)
    meta = Column("metadata", JSON, nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Indexes for performance optimization
    __table_args__ = (
        Index("idx_audit_user_created", "user_id", "created_at"),
        Index("idx_audit_event_created", "event_type", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "user_id": self.user_id,
            "target_id": self.target_id,
            "resource_type": self.resource_type,
            "metadata": self.meta or {},
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
