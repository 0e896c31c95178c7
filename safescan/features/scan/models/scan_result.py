from sqlalchemy import Column, String, Integer, Float, DateTime, Text, ForeignKey, Index, CheckConstraint, JSON

from safescan.platform.db.base import Base, utcnow


class ScanResult(Base):
    """Outcome of a completed scan. Written once, together with the COMPLETED transition."""

    __tablename__ = "scan_results"

    job_id = Column(String, ForeignKey("scan_jobs.id", ondelete="CASCADE"), primary_key=True)

    risk_score = Column(Integer, nullable=False)
    categories = Column(JSON, nullable=False, default=list)
    confidence_score = Column(Float, nullable=False)
    reasoning = Column(Text, nullable=False)
    indicators = Column(JSON, nullable=False, default=list)

    content_hash = Column(String(64), nullable=False)
    http_status = Column(Integer, nullable=True)
    http_headers = Column(JSON, nullable=False, default=dict)
    content_type = Column(String(255), nullable=True)

    model_used = Column(String(255), nullable=False)
    analysis_metadata = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("risk_score >= 0 AND risk_score <= 100", name="check_risk_score_range"),
        CheckConstraint("confidence_score >= 0 AND confidence_score <= 1", name="check_confidence_range"),
        Index("idx_scan_results_content_hash_created", "content_hash", "created_at"),
        Index("idx_scan_results_created", "created_at"),
    )
