"""
Data export and deletion job rows.

Each row is a persisted job moving through
``pending -> processing -> completed | failed``; the scheduler's supervisor
re-queues rows left behind by a crashed worker.
"""

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from ptsa.constants.privacy import JobStatus
from ptsa.database import Base
from ptsa.utils.dates import utcnow


class DataExportRequest(Base):
    __tablename__ = "data_export_requests"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    export_data = Column(JSON, nullable=True)
    export_url = Column(String(255), nullable=True)
    expires_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "export_url": self.export_url,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class DataDeletionRequest(Base):
    __tablename__ = "data_deletion_requests"

    id = Column(Integer, primary_key=True, index=True)
    # Replaced by the anonymized id once the job completes
    user_id = Column(String(255), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value, index=True)
    reason = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    anonymized_id = Column(String(64), nullable=True)
    deletion_results = Column(JSON, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "anonymized_id": self.anonymized_id,
            "deletion_results": self.deletion_results,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
