"""
Scan job persistence and state machine.

State changes are optimistic: callers pass the version they last read and the
update only lands if the stored row still carries that version. No lock is held
between reading a job and transitioning it.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, List, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from safescan.features.scan.errors import ScanError, ScanErrorCode, database_error, not_found
from safescan.features.scan.models.scan_job import ScanJob, ScanJobState
from safescan.platform.db.base import utcnow
from safescan.platform.logger import get_logger
from safescan.platform.result import Err, Ok, Result

logger = get_logger(__name__)


ALLOWED_TRANSITIONS: Dict[ScanJobState, FrozenSet[ScanJobState]] = {
    ScanJobState.QUEUED: frozenset({ScanJobState.FETCHING, ScanJobState.FAILED}),
    ScanJobState.FETCHING: frozenset({ScanJobState.ANALYZING, ScanJobState.FAILED, ScanJobState.TIMED_OUT}),
    ScanJobState.ANALYZING: frozenset({ScanJobState.COMPLETED, ScanJobState.FAILED, ScanJobState.TIMED_OUT}),
    ScanJobState.COMPLETED: frozenset(),
    ScanJobState.FAILED: frozenset(),
    ScanJobState.TIMED_OUT: frozenset(),
}


def allowed_targets(from_state: ScanJobState) -> FrozenSet[ScanJobState]:
    return ALLOWED_TRANSITIONS.get(ScanJobState(from_state), frozenset())


def can_transition(from_state: ScanJobState, to_state: ScanJobState) -> bool:
    return ScanJobState(to_state) in allowed_targets(from_state)


@dataclass(frozen=True)
class ScanJobSnapshot:
    id: str
    user_id: str
    url: str
    state: ScanJobState
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, job: ScanJob) -> "ScanJobSnapshot":
        return cls(
            id=job.id,
            user_id=job.user_id,
            url=job.url,
            state=ScanJobState(job.state),
            version=job.version,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


def _version_conflict(job_id: str, expected: int, actual: int) -> ScanError:
    return ScanError(
        code=ScanErrorCode.VERSION_CONFLICT,
        message=f"Version mismatch for job {job_id}. Expected: {expected}, Actual: {actual}",
        details={"expected": expected, "actual": actual},
    )


class JobStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, job_id: str) -> Result[ScanJobSnapshot, ScanError]:
        try:
            with self._session_factory() as db:
                job = db.get(ScanJob, job_id)
                if job is None:
                    return Err(not_found("Scan job", job_id))
                return Ok(ScanJobSnapshot.from_model(job))
        except SQLAlchemyError as e:
            logger.error(f"[{job_id}] Failed to read scan job: {e}")
            return Err(database_error(e))

    def list_for_user(self, user_id: str, limit: int = 50) -> List[ScanJobSnapshot]:
        with self._session_factory() as db:
            jobs = db.execute(
                select(ScanJob)
                .where(ScanJob.user_id == user_id)
                .order_by(ScanJob.created_at.desc())
                .limit(limit)
            ).scalars().all()
            return [ScanJobSnapshot.from_model(job) for job in jobs]

    def transition(
        self,
        job_id: str,
        expected_version: int,
        to_state: ScanJobState,
        attach: Sequence[object] = (),
    ) -> Result[ScanJobSnapshot, ScanError]:
        """
        Move a job to ``to_state`` if it is still at ``expected_version``.

        ``attach`` rows are inserted in the same transaction as the state change
        and are discarded if the compare-and-swap loses.
        """
        to_state = ScanJobState(to_state)
        try:
            with self._session_factory() as db:
                job = db.get(ScanJob, job_id)
                if job is None:
                    return Err(not_found("Scan job", job_id))

                current_state = ScanJobState(job.state)

                # A stale writer always learns it lost, whatever edge it asked for.
                if job.version != expected_version:
                    return Err(_version_conflict(job_id, expected_version, job.version))

                if not can_transition(current_state, to_state):
                    allowed = ", ".join(sorted(s.value for s in allowed_targets(current_state))) or "none"
                    return Err(ScanError(
                        code=ScanErrorCode.INVALID_TRANSITION,
                        message=(
                            f"Invalid transition from {current_state.value} to {to_state.value}. "
                            f"Allowed transitions: {allowed}"
                        ),
                        details={"current_state": current_state.value, "target_state": to_state.value},
                    ))

                now = utcnow()
                result = db.execute(
                    update(ScanJob)
                    .where(ScanJob.id == job_id, ScanJob.version == expected_version)
                    .values(state=to_state, version=ScanJob.version + 1, updated_at=now)
                    .execution_options(synchronize_session=False)
                )

                if result.rowcount == 0:
                    db.rollback()
                    db.expire_all()
                    fresh = db.get(ScanJob, job_id)
                    actual = fresh.version if fresh is not None else expected_version
                    logger.info(f"[{job_id}] Lost CAS race moving to {to_state.value} at version {expected_version}")
                    return Err(_version_conflict(job_id, expected_version, actual))

                for row in attach:
                    db.add(row)
                db.commit()

                logger.info(
                    f"[{job_id}] {current_state.value} -> {to_state.value} (version {expected_version + 1})"
                )
                return Ok(ScanJobSnapshot(
                    id=job.id,
                    user_id=job.user_id,
                    url=job.url,
                    state=to_state,
                    version=expected_version + 1,
                    created_at=job.created_at,
                    updated_at=now,
                ))
        except SQLAlchemyError as e:
            logger.error(f"[{job_id}] Transition to {to_state.value} failed: {e}")
            return Err(database_error(e))
