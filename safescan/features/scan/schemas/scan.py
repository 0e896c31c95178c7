"""
Scan Schemas

Wire and API shapes for the scan engine. Everything that crosses a process
boundary (queue messages, sandbox stdout, analyzer calls) uses camelCase keys;
Python code reads the snake_case attributes.
"""
import enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CONTENT_HASH_PATTERN = r"^[a-f0-9]{64}$"


class RiskCategory(str, enum.Enum):
    malware = "malware"
    phishing = "phishing"
    scam = "scam"
    suspicious = "suspicious"
    adult_content = "adult_content"
    violence = "violence"
    illegal_content = "illegal_content"
    misinformation = "misinformation"
    spam = "spam"
    other = "other"


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ============================================================================
# Queue
# ============================================================================

class QueueMessage(CamelModel):
    """The only data that crosses the queue: no content, no credentials."""
    job_id: str = Field(alias="jobId", min_length=1)
    url: str = Field(min_length=1)
    user_id: str = Field(alias="userId", min_length=1)


# ============================================================================
# Fetch metadata and risk assessment
# ============================================================================

class FetchMetadata(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    meta_tags: Optional[Dict[str, str]] = Field(default=None, alias="metaTags")
    link_count: Optional[int] = Field(default=None, alias="linkCount", ge=0)


class RiskAssessment(CamelModel):
    """Output of the RiskAnalyzer contract."""
    risk_score: int = Field(alias="riskScore", ge=0, le=100)
    categories: List[RiskCategory] = Field(default_factory=list)
    confidence_score: float = Field(alias="confidenceScore", ge=0, le=1)
    reasoning: str = Field(min_length=1)
    indicators: List[str] = Field(default_factory=list)
    model_used: str = Field(alias="modelUsed", min_length=1)
    analysis_metadata: Dict[str, Any] = Field(default_factory=dict, alias="analysisMetadata")

    @field_validator("categories")
    @classmethod
    def _dedupe_categories(cls, value):
        return list(dict.fromkeys(value))


class RiskAnalysisRequest(CamelModel):
    """Input of the RiskAnalyzer contract."""
    url: str
    content_hash: str = Field(alias="contentHash", pattern=CONTENT_HASH_PATTERN)
    http_status: Optional[int] = Field(default=None, alias="httpStatus")
    http_headers: Dict[str, str] = Field(default_factory=dict, alias="httpHeaders")
    content_type: Optional[str] = Field(default=None, alias="contentType")
    metadata: FetchMetadata = Field(default_factory=FetchMetadata)


class ScanResultPayload(RiskAssessment):
    """Complete, validated scan result as stored at COMPLETED."""
    content_hash: str = Field(alias="contentHash", pattern=CONTENT_HASH_PATTERN)
    http_status: Optional[int] = Field(alias="httpStatus")
    http_headers: Dict[str, str] = Field(alias="httpHeaders")
    content_type: Optional[str] = Field(alias="contentType")


ASSESSMENT_FIELDS = ("risk_score", "confidence_score", "reasoning", "model_used")


class SandboxPayload(CamelModel):
    """
    What an isolated unit reports on stdout.

    Fetch fields are mandatory. The assessment fields are either all present
    (the unit ran the analysis itself) or all absent (the orchestrator will
    consult the cache or the analyzer); whatever is present must conform to the
    scan result shape.
    """
    content_hash: str = Field(alias="contentHash", pattern=CONTENT_HASH_PATTERN)
    http_status: Optional[int] = Field(default=None, alias="httpStatus")
    http_headers: Dict[str, str] = Field(default_factory=dict, alias="httpHeaders")
    content_type: Optional[str] = Field(default=None, alias="contentType")
    metadata: FetchMetadata = Field(default_factory=FetchMetadata)

    risk_score: Optional[int] = Field(default=None, alias="riskScore", ge=0, le=100)
    categories: Optional[List[RiskCategory]] = None
    confidence_score: Optional[float] = Field(default=None, alias="confidenceScore", ge=0, le=1)
    reasoning: Optional[str] = Field(default=None, min_length=1)
    indicators: Optional[List[str]] = None
    model_used: Optional[str] = Field(default=None, alias="modelUsed", min_length=1)
    analysis_metadata: Optional[Dict[str, Any]] = Field(default=None, alias="analysisMetadata")

    @model_validator(mode="after")
    def _assessment_all_or_nothing(self):
        present = [name for name in ASSESSMENT_FIELDS if getattr(self, name) is not None]
        if present and len(present) != len(ASSESSMENT_FIELDS):
            missing = sorted(set(ASSESSMENT_FIELDS) - set(present))
            raise ValueError(f"incomplete risk assessment, missing: {', '.join(missing)}")
        return self

    @property
    def has_assessment(self) -> bool:
        return self.risk_score is not None

    def assessment(self) -> Optional[RiskAssessment]:
        if not self.has_assessment:
            return None
        return RiskAssessment(
            risk_score=self.risk_score,
            categories=self.categories or [],
            confidence_score=self.confidence_score,
            reasoning=self.reasoning,
            indicators=self.indicators or [],
            model_used=self.model_used,
            analysis_metadata=self.analysis_metadata or {},
        )

    def analysis_request(self, url: str) -> RiskAnalysisRequest:
        return RiskAnalysisRequest(
            url=url,
            content_hash=self.content_hash,
            http_status=self.http_status,
            http_headers=self.http_headers,
            content_type=self.content_type,
            metadata=self.metadata,
        )


# ============================================================================
# Orchestrator-facing API
# ============================================================================

class ScanCreateRequest(BaseModel):
    """Request to start a scan."""
    url: str = Field(min_length=1, max_length=2048)

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://example.com",
            }
        }


class ScanCreateResponse(BaseModel):
    id: str
    state: str


class ScanJobView(BaseModel):
    """A scan job together with its result, if the job completed."""
    id: str
    user_id: str
    url: str
    state: str
    version: int
    created_at: datetime
    updated_at: datetime
    result: Optional[Dict[str, Any]] = None
