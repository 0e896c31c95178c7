"""
Content-hash keyed result cache.

There is no eviction: a cached result simply stops matching once it is older
than the TTL, which is checked on every read.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from safescan.features.scan.models.scan_result import ScanResult
from safescan.features.scan.schemas.scan import RiskAssessment, ScanResultPayload
from safescan.features.scan.utils.headers import sanitize_headers
from safescan.platform.db.base import utcnow
from safescan.platform.logger import get_logger, short_hash

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 30 * 24 * 60 * 60


def result_row(job_id: str, payload: ScanResultPayload) -> ScanResult:
    """Build the (not yet persisted) scan_results row for a validated payload."""
    return ScanResult(
        job_id=job_id,
        risk_score=payload.risk_score,
        categories=list(payload.categories),
        confidence_score=payload.confidence_score,
        reasoning=payload.reasoning,
        indicators=list(payload.indicators),
        content_hash=payload.content_hash,
        http_status=payload.http_status,
        http_headers=sanitize_headers(payload.http_headers),
        content_type=payload.content_type,
        model_used=payload.model_used,
        analysis_metadata=dict(payload.analysis_metadata),
    )


def result_to_dict(row: ScanResult) -> Dict[str, Any]:
    return {
        "jobId": row.job_id,
        "riskScore": row.risk_score,
        "categories": list(row.categories or []),
        "confidenceScore": row.confidence_score,
        "reasoning": row.reasoning,
        "indicators": list(row.indicators or []),
        "contentHash": row.content_hash,
        "httpStatus": row.http_status,
        "httpHeaders": dict(row.http_headers or {}),
        "contentType": row.content_type,
        "modelUsed": row.model_used,
        "analysisMetadata": dict(row.analysis_metadata or {}),
        "createdAt": row.created_at,
    }


@dataclass(frozen=True)
class CachedScanResult:
    job_id: str
    content_hash: str
    created_at: datetime
    payload: Dict[str, Any]

    def assessment(self) -> RiskAssessment:
        return RiskAssessment.model_validate(self.payload)


class ResultStore:
    """Read access to stored scan results by job."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._session_factory() as db:
            row = db.get(ScanResult, job_id)
            return result_to_dict(row) if row is not None else None


class ResultCache:
    def __init__(self, session_factory: sessionmaker, default_ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self._session_factory = session_factory
        self.default_ttl_seconds = default_ttl_seconds

    def lookup(
        self,
        content_hash: str,
        ttl_seconds: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Optional[CachedScanResult]:
        """Most recent result for ``content_hash`` created within the TTL, or None."""
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        cutoff = (now or utcnow()) - timedelta(seconds=ttl)

        with self._session_factory() as db:
            row = db.execute(
                select(ScanResult)
                .where(ScanResult.content_hash == content_hash, ScanResult.created_at >= cutoff)
                .order_by(ScanResult.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()

        if row is None:
            logger.info(f"Cache miss for content hash {short_hash(content_hash)} (ttl {ttl}s)")
            return None

        logger.info(
            f"Cache hit for content hash {short_hash(content_hash)}: job {row.job_id}, risk {row.risk_score}"
        )
        return CachedScanResult(
            job_id=row.job_id,
            content_hash=row.content_hash,
            created_at=row.created_at,
            payload=result_to_dict(row),
        )
