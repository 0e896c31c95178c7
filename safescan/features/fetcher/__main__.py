"""
Sandbox entry point: ``python -m safescan.features.fetcher``.

Reads JOB_ID, SCAN_URL, FETCH_TIMEOUT_MS and MAX_REDIRECT_DEPTH from the
environment and prints exactly one JSON document on stdout:

    {"jobId": ..., "success": true, "result": {...}}
    {"jobId": ..., "success": false, "error": {"type": ..., "message": ...}}

Exit codes: 0 success, 2 fetch timeout, 1 anything else. Logging goes to stderr.
"""
import json
import os
import sys
from typing import Any, Dict, Optional

from safescan.features.fetcher.url_fetcher import FetchErrorType, fetch_url
from safescan.platform.logger import get_logger

logger = get_logger("safescan.fetcher")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_TIMEOUT = 2


def _emit(document: Dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(document) + "\n")
    sys.stdout.flush()


def _int_env(name: str, default: int) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return None


def _analyze(url: str, fetched: Dict[str, Any]):
    """Run the risk analysis in the unit when SANDBOX_ANALYZE is on and an endpoint is set."""
    from safescan.features.scan.schemas.scan import RiskAnalysisRequest
    from safescan.features.scan.services.analysis.risk_analyzer import HttpRiskAnalyzer

    endpoint = os.environ.get("RISK_ANALYZER_URL")
    if os.environ.get("SANDBOX_ANALYZE", "").lower() != "true" or not endpoint:
        return None

    analyzer = HttpRiskAnalyzer(
        endpoint=endpoint,
        api_key=os.environ.get("RISK_ANALYZER_API_KEY") or os.environ.get("OPENROUTER_API_KEY"),
    )
    request = RiskAnalysisRequest.model_validate({"url": url, **fetched})
    return analyzer.analyze(request)


def main() -> int:
    job_id = os.environ.get("JOB_ID")
    url = os.environ.get("SCAN_URL")
    timeout_ms = _int_env("FETCH_TIMEOUT_MS", 30000)
    max_redirect_depth = _int_env("MAX_REDIRECT_DEPTH", 5)

    if not job_id:
        _emit({"error": "Missing required parameter: JOB_ID"})
        return EXIT_FAILURE
    if not url:
        _emit({"error": "Missing required parameter: SCAN_URL"})
        return EXIT_FAILURE
    if timeout_ms is None or timeout_ms <= 0:
        _emit({"error": "Invalid FETCH_TIMEOUT_MS: must be a positive number"})
        return EXIT_FAILURE
    if max_redirect_depth is None or max_redirect_depth < 0:
        _emit({"error": "Invalid MAX_REDIRECT_DEPTH: must be a non-negative number"})
        return EXIT_FAILURE

    logger.info(f"[{job_id}] Fetching {url}")
    fetched = fetch_url(url, timeout_ms=timeout_ms, max_redirect_depth=max_redirect_depth)
    if fetched.is_err():
        error = fetched.error
        logger.warning(f"[{job_id}] Fetch failed: {error.message}")
        _emit({"jobId": job_id, "success": False, "error": error.to_wire()})
        return EXIT_TIMEOUT if error.type == FetchErrorType.TIMEOUT else EXIT_FAILURE

    result = fetched.value.to_wire()

    analysis = _analyze(url, result)
    if analysis is not None:
        if analysis.is_err():
            _emit({"jobId": job_id, "success": False, "error": analysis.error.public()})
            return EXIT_FAILURE
        result.update(analysis.value.to_wire())

    _emit({"jobId": job_id, "success": True, "result": result})
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
