"""
RiskAnalyzer contract.

The classifier itself lives outside this service. We only send it the fetch
metadata (never the content) and validate what comes back.
"""
import enum
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import ValidationError

from safescan.features.scan.errors import ScanError, ScanErrorCode
from safescan.features.scan.schemas.scan import RiskAnalysisRequest, RiskAssessment
from safescan.platform.logger import get_logger, short_hash
from safescan.platform.result import Err, Ok, Result

logger = get_logger(__name__)


class RiskAnalyzerErrorType(str, enum.Enum):
    AGENT = "agent"
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    PARSE = "parse"
    CONFIG = "config"


ERROR_CODES = {
    RiskAnalyzerErrorType.AGENT: ScanErrorCode.ANALYSIS_ERROR,
    RiskAnalyzerErrorType.VALIDATION: ScanErrorCode.VALIDATION_ERROR,
    RiskAnalyzerErrorType.TIMEOUT: ScanErrorCode.TIMEOUT,
    RiskAnalyzerErrorType.PARSE: ScanErrorCode.PARSE_ERROR,
    RiskAnalyzerErrorType.CONFIG: ScanErrorCode.CONFIG_ERROR,
}


def analyzer_error(error_type: RiskAnalyzerErrorType, message: str, **details) -> ScanError:
    return ScanError(
        code=ERROR_CODES[error_type],
        message=message,
        details={"analyzer_error_type": error_type.value, **details},
    )


class RiskAnalyzer(ABC):
    @abstractmethod
    def analyze(self, request: RiskAnalysisRequest) -> Result[RiskAssessment, ScanError]:
        ...


class UnconfiguredRiskAnalyzer(RiskAnalyzer):
    def analyze(self, request: RiskAnalysisRequest) -> Result[RiskAssessment, ScanError]:
        return Err(analyzer_error(RiskAnalyzerErrorType.CONFIG, "No risk analyzer endpoint is configured"))


class HttpRiskAnalyzer(RiskAnalyzer):
    """Posts the analysis request as camelCase JSON and expects a RiskAssessment back."""

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def analyze(self, request: RiskAnalysisRequest) -> Result[RiskAssessment, ScanError]:
        logger.info(f"Requesting risk analysis for {request.url} (hash {short_hash(request.content_hash)})")

        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = client.post(self.endpoint, json=request.to_wire(), headers=self._headers())
        except httpx.TimeoutException as e:
            return Err(analyzer_error(
                RiskAnalyzerErrorType.TIMEOUT,
                f"Risk analysis timed out after {self.timeout_seconds}s",
                error=str(e),
            ))
        except httpx.RequestError as e:
            return Err(analyzer_error(RiskAnalyzerErrorType.AGENT, f"Risk analyzer request failed: {e}"))

        if response.status_code != 200:
            return Err(analyzer_error(
                RiskAnalyzerErrorType.AGENT,
                f"Risk analyzer returned {response.status_code}",
                response=response.text[:1000],
            ))

        try:
            body = response.json()
        except ValueError:
            return Err(analyzer_error(
                RiskAnalyzerErrorType.PARSE,
                "Risk analyzer response is not JSON",
                response=response.text[:1000],
            ))

        # Error objects come back as {"type": ..., "message": ...}
        if isinstance(body, dict) and "type" in body and "riskScore" not in body:
            try:
                error_type = RiskAnalyzerErrorType(body["type"])
            except ValueError:
                error_type = RiskAnalyzerErrorType.AGENT
            return Err(analyzer_error(error_type, str(body.get("message") or "Risk analysis failed")))

        try:
            assessment = RiskAssessment.model_validate(body)
        except ValidationError as e:
            return Err(analyzer_error(
                RiskAnalyzerErrorType.VALIDATION,
                "Risk analyzer response failed schema validation",
                errors=e.errors(include_url=False, include_context=False),
            ))

        logger.info(f"Risk analysis for {request.url}: score {assessment.risk_score} via {assessment.model_used}")
        return Ok(assessment)


def build_analyzer_from_settings(settings) -> RiskAnalyzer:
    if not settings.RISK_ANALYZER_URL:
        logger.warning("RISK_ANALYZER_URL is not set; scans that need analysis will fail with config_error")
        return UnconfiguredRiskAnalyzer()
    return HttpRiskAnalyzer(
        endpoint=settings.RISK_ANALYZER_URL,
        api_key=settings.RISK_ANALYZER_API_KEY or settings.OPENROUTER_API_KEY,
        timeout_seconds=settings.RISK_ANALYZER_TIMEOUT_SECONDS,
    )
