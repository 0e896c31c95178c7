import json

import httpx
import pytest

from safescan.features.scan.errors import ScanErrorCode
from safescan.features.scan.schemas.scan import RiskAnalysisRequest
from safescan.features.scan.services.analysis.risk_analyzer import HttpRiskAnalyzer, UnconfiguredRiskAnalyzer
from tests.fakes import HASH_A

ASSESSMENT = {
    "riskScore": 73,
    "categories": ["phishing", "phishing", "scam"],
    "confidenceScore": 0.91,
    "reasoning": "Login form imitating a bank",
    "indicators": ["credential form"],
    "modelUsed": "classifier-v2",
}

REQUEST = RiskAnalysisRequest(
    url="https://example.com",
    content_hash=HASH_A,
    http_status=200,
    http_headers={"content-type": "text/html"},
    content_type="text/html",
    metadata={"title": "Sign in"},
)


def _analyzer(handler, api_key="secret"):
    return HttpRiskAnalyzer(
        endpoint="https://analyzer.internal/analyze",
        api_key=api_key,
        timeout_seconds=1,
        transport=httpx.MockTransport(handler),
    )


def test_valid_assessment():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=ASSESSMENT)

    assessment = _analyzer(handler).analyze(REQUEST).value

    assert assessment.risk_score == 73
    assert assessment.categories == ["phishing", "scam"]
    assert seen["auth"] == "Bearer secret"
    assert seen["body"]["contentHash"] == HASH_A
    assert seen["body"]["metadata"]["title"] == "Sign in"


@pytest.mark.parametrize("response,code", [
    (httpx.Response(502, text="bad gateway"), ScanErrorCode.ANALYSIS_ERROR),
    (httpx.Response(200, text="not json"), ScanErrorCode.PARSE_ERROR),
    (httpx.Response(200, json={**ASSESSMENT, "riskScore": 150}), ScanErrorCode.VALIDATION_ERROR),
    (httpx.Response(200, json={"type": "timeout", "message": "model busy"}), ScanErrorCode.TIMEOUT),
    (httpx.Response(200, json={"type": "agent", "message": "refused"}), ScanErrorCode.ANALYSIS_ERROR),
])
def test_failed_analysis_is_classified(response, code):
    failed = _analyzer(lambda request: response).analyze(REQUEST)
    assert failed.error.code == code


def test_transport_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    failed = _analyzer(handler).analyze(REQUEST)

    assert failed.error.code == ScanErrorCode.TIMEOUT
    assert failed.error.details["analyzer_error_type"] == "timeout"


def test_no_api_key_sends_no_authorization():
    def handler(request):
        assert "authorization" not in request.headers
        return httpx.Response(200, json=ASSESSMENT)

    assert _analyzer(handler, api_key=None).analyze(REQUEST).is_ok()


def test_unconfigured_analyzer():
    assert UnconfiguredRiskAnalyzer().analyze(REQUEST).error.code == ScanErrorCode.CONFIG_ERROR
