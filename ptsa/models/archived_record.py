from sqlalchemy import JSON, Column, DateTime, Index, Integer, String

from ptsa.database import Base
from ptsa.utils.dates import utcnow


class ArchivedRecord(Base):
    """Rows moved out of live tables by a retention policy."""

    __tablename__ = "archived_records"

    id = Column(Integer, primary_key=True, index=True)
    source_table = Column(String(100), nullable=False)
    record_id = Column(String(64), nullable=False)
    data = Column(JSON, nullable=False)
    archive_reason = Column(String(100), nullable=False, default="retention_policy")
    archived_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_archived_source_record", "source_table", "record_id"),)
