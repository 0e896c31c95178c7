import enum

from sqlalchemy import Column, String, Integer, Text, Index, CheckConstraint, Enum

from safescan.platform.db.base import BaseModel


class ScanJobState(str, enum.Enum):
    """Scan job state machine"""
    QUEUED = "QUEUED"
    FETCHING = "FETCHING"
    ANALYZING = "ANALYZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


TERMINAL_STATES = frozenset({ScanJobState.COMPLETED, ScanJobState.FAILED, ScanJobState.TIMED_OUT})


class ScanJob(BaseModel):

    __tablename__ = "scan_jobs"

    user_id = Column(String, nullable=False, index=True)
    url = Column(Text, nullable=False)

    # Job status (state machine); only mutated through JobStore.transition
    state = Column(
        Enum(ScanJobState, name="scan_job_state", native_enum=False, length=16),
        default=ScanJobState.QUEUED,
        nullable=False,
    )
    version = Column(Integer, default=1, nullable=False)

    # Timestamps (created_at and updated_at inherited from BaseModel)

    __table_args__ = (
        CheckConstraint("version >= 1", name="check_scan_job_version_positive"),
        Index("idx_scan_jobs_state", "state"),
        Index("idx_scan_jobs_user_created", "user_id", "created_at"),
        Index("idx_scan_jobs_state_created", "state", "created_at"),
    )
