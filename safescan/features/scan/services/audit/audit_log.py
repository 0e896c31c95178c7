"""
Append-only, metadata-only audit trail.

Entries are screened against a deny-list of content-bearing keys before
anything touches storage. This component has no update or delete operation.
"""
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from safescan.features.scan.errors import ScanError, ScanErrorCode, database_error
from safescan.features.scan.models.audit_log import AuditLogEntry
from safescan.features.scan.schemas.audit import FORBIDDEN_AUDIT_FIELDS, AuditLogCreate
from safescan.features.scan.utils.headers import sanitize_headers
from safescan.platform.db.base import utcnow
from safescan.platform.logger import get_logger, short_hash
from safescan.platform.result import Err, Ok, Result

logger = get_logger(__name__)


def find_forbidden_fields(entry: Mapping[str, Any]) -> List[str]:
    return sorted(key for key in entry.keys() if key in FORBIDDEN_AUDIT_FIELDS)


class AuditLog:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def append(self, entry: Union[AuditLogCreate, Mapping[str, Any]]) -> Result[str, ScanError]:
        """Validate and store one entry. Returns the new entry id."""
        if isinstance(entry, AuditLogCreate):
            raw = entry.model_dump(by_alias=True)
        else:
            raw = dict(entry)

        forbidden = find_forbidden_fields(raw)
        if forbidden:
            logger.error(f"Rejected audit entry carrying content fields: {forbidden}")
            return Err(ScanError(
                code=ScanErrorCode.VALIDATION_ERROR,
                message=(
                    f"Forbidden field '{forbidden[0]}' detected. "
                    "Audit logs must not contain content fields."
                ),
                details={"forbidden_fields": forbidden},
            ))

        try:
            record = AuditLogCreate.model_validate(raw)
        except ValidationError as e:
            return Err(ScanError(
                code=ScanErrorCode.VALIDATION_ERROR,
                message="Invalid audit log entry",
                details={"errors": e.errors(include_url=False)},
            ))

        row = AuditLogEntry(
            scan_job_id=record.scan_job_id,
            url_accessed=record.url_accessed,
            timestamp=record.timestamp or utcnow(),
            content_hash=record.content_hash,
            http_status=record.http_status,
            http_headers=sanitize_headers(record.http_headers) if record.http_headers is not None else None,
            content_type=record.content_type,
            risk_assessment_summary=(
                record.risk_assessment_summary.to_wire() if record.risk_assessment_summary else None
            ),
        )

        try:
            with self._session_factory() as db:
                db.add(row)
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"[{record.scan_job_id}] Audit log insert failed: {e}")
            return Err(database_error(e))

        logger.info(
            f"[{record.scan_job_id}] Audit entry written for {record.url_accessed} "
            f"(hash {short_hash(record.content_hash)})"
        )
        return Ok(row.id)

    def list_for_job(self, scan_job_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._session_factory() as db:
            query = (
                select(AuditLogEntry)
                .where(AuditLogEntry.scan_job_id == scan_job_id)
                .order_by(AuditLogEntry.timestamp.asc())
            )
            if limit is not None:
                query = query.limit(limit)
            rows = db.execute(query).scalars().all()
            return [
                {
                    "id": row.id,
                    "scanJobId": row.scan_job_id,
                    "urlAccessed": row.url_accessed,
                    "timestamp": row.timestamp,
                    "contentHash": row.content_hash,
                    "httpStatus": row.http_status,
                    "httpHeaders": row.http_headers,
                    "contentType": row.content_type,
                    "riskAssessmentSummary": row.risk_assessment_summary,
                }
                for row in rows
            ]
