from datetime import datetime
from typing import Dict, List, Optional

from pydantic import ConfigDict, Field

from safescan.features.scan.schemas.scan import CONTENT_HASH_PATTERN, CamelModel

# Keys that could carry fetched content. An audit entry holding any of them is refused.
FORBIDDEN_AUDIT_FIELDS = frozenset({
    "content",
    "body",
    "html",
    "text",
    "screenshot",
    "screenshots",
    "dom",
    "domContent",
    "pageContent",
    "responseBody",
    "responseContent",
})


class RiskAssessmentSummary(CamelModel):
    """Score, categories and confidence only; no reasoning text."""
    risk_score: int = Field(alias="riskScore", ge=0, le=100)
    categories: List[str] = Field(default_factory=list)
    confidence_score: float = Field(alias="confidenceScore", ge=0, le=1)


class AuditLogCreate(CamelModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, extra="forbid")

    scan_job_id: str = Field(alias="scanJobId", min_length=1)
    url_accessed: str = Field(alias="urlAccessed", min_length=1)
    timestamp: Optional[datetime] = None
    content_hash: str = Field(alias="contentHash", pattern=CONTENT_HASH_PATTERN)
    http_status: Optional[int] = Field(default=None, alias="httpStatus")
    http_headers: Optional[Dict[str, str]] = Field(default=None, alias="httpHeaders")
    content_type: Optional[str] = Field(default=None, alias="contentType")
    risk_assessment_summary: Optional[RiskAssessmentSummary] = Field(default=None, alias="riskAssessmentSummary")
