from sqlalchemy import Column, String, Integer, DateTime, Text, ForeignKey, Index, JSON

from safescan.platform.db.base import Base, new_id, utcnow


class AuditLogEntry(Base):
    """
    Append-only record of what was fetched and how it was assessed.

    Metadata only: there is deliberately no column able to hold a body,
    screenshot or DOM snapshot.
    """

    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=new_id)
    scan_job_id = Column(String, ForeignKey("scan_jobs.id", ondelete="CASCADE"), nullable=False)
    url_accessed = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False)
    content_hash = Column(String(64), nullable=False)
    http_status = Column(Integer, nullable=True)
    http_headers = Column(JSON, nullable=True)
    content_type = Column(String(255), nullable=True)
    risk_assessment_summary = Column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_audit_logs_scan_job_timestamp", "scan_job_id", "timestamp"),
        Index("idx_audit_logs_url_accessed", "url_accessed"),
        Index("idx_audit_logs_content_hash", "content_hash"),
    )
