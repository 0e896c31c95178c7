"""
Sandbox Executor

Runs the fetch for one job inside an isolated unit and turns whatever the unit
printed into a validated ``SandboxPayload``.

Output contract of the unit: the LAST complete JSON object on stdout is the
payload. It may be wrapped as ``{"jobId", "success", "result"}`` (or
``"error"`` on failure); the wrapper is unwrapped here.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from safescan.features.scan.errors import ScanError, ScanErrorCode
from safescan.features.scan.schemas.scan import SandboxPayload
from safescan.features.scan.services.sandbox.logs import tail
from safescan.features.scan.services.sandbox.runner import (
    RunOutput,
    SandboxLimits,
    SandboxRunner,
    SandboxRunnerError,
    SandboxUnit,
)
from safescan.platform.logger import get_logger
from safescan.platform.result import Err, Ok, Result

logger = get_logger(__name__)

_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class ExecutionResult:
    payload: SandboxPayload
    stdout: str
    stderr: str
    exit_code: int


def extract_last_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the last complete JSON object found in ``text``, or None."""
    last = None
    index = text.find("{")
    while index != -1:
        try:
            value, end = _decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            index = text.find("{", index + 1)
            continue
        if isinstance(value, dict):
            last = value
        index = text.find("{", end)
    return last


def _is_wrapper(document: Mapping[str, Any]) -> bool:
    return "success" in document and ("result" in document or "error" in document)


def _log_details(output: RunOutput) -> Dict[str, Any]:
    return {
        "exit_code": output.exit_code,
        "unit_id": output.unit_id,
        "stdout_tail": tail(output.stdout),
        "stderr_tail": tail(output.stderr),
    }


def parse_output(output: RunOutput) -> Result[SandboxPayload, ScanError]:
    """Extract, unwrap and validate the payload of a successfully exited unit."""
    document = extract_last_json_object(output.stdout)
    if document is None:
        return Err(ScanError(
            code=ScanErrorCode.PARSE_ERROR,
            message="No JSON object found in sandbox output",
            details=_log_details(output),
        ))

    if _is_wrapper(document):
        if not document.get("success"):
            return Err(ScanError(
                code=ScanErrorCode.CRASH,
                message=f"Sandbox reported failure: {document.get('error') or 'unknown error'}",
                details=_log_details(output),
            ))
        document = document.get("result")
        if not isinstance(document, dict):
            return Err(ScanError(
                code=ScanErrorCode.PARSE_ERROR,
                message="Sandbox result is not a JSON object",
                details=_log_details(output),
            ))

    try:
        payload = SandboxPayload.model_validate(document)
    except ValidationError as e:
        return Err(ScanError(
            code=ScanErrorCode.VALIDATION_ERROR,
            message="Sandbox output failed schema validation",
            details={"errors": e.errors(include_url=False, include_context=False), **_log_details(output)},
        ))
    return Ok(payload)


class SandboxExecutor:
    def __init__(
        self,
        runner: SandboxRunner,
        limits: Optional[SandboxLimits] = None,
        extra_env: Optional[Mapping[str, str]] = None,
    ):
        self.runner = runner
        self.limits = limits or SandboxLimits()
        self.extra_env = dict(extra_env or {})

    def _unit(self, job_id: str, url: str) -> SandboxUnit:
        env = {key: str(value) for key, value in self.extra_env.items() if value is not None}
        env.update({"JOB_ID": job_id, "SCAN_URL": url})
        return SandboxUnit(job_id=job_id, url=url, env=env)

    def execute(self, job_id: str, url: str) -> Result[ExecutionResult, ScanError]:
        """Run one isolated fetch. The unit is always torn down before this returns."""
        try:
            output = self.runner.run(self._unit(job_id, url), self.limits)
        except SandboxRunnerError as e:
            logger.error(f"[{job_id}] Sandbox infrastructure failure: {e}")
            return Err(ScanError(
                code=ScanErrorCode.SANDBOX_ERROR,
                message="Sandbox infrastructure failure",
                details={"error": str(e)},
            ))

        if output.timed_out:
            return Err(ScanError(
                code=ScanErrorCode.TIMEOUT,
                message=f"Sandbox execution exceeded {self.limits.timeout_ms}ms",
                details=_log_details(output),
            ))

        if output.exit_code != 0:
            logger.warning(f"[{job_id}] Sandbox exited with code {output.exit_code}")
            return Err(ScanError(
                code=ScanErrorCode.CRASH,
                message=f"Sandbox exited with code {output.exit_code}",
                details=_log_details(output),
            ))

        parsed = parse_output(output)
        if parsed.is_err():
            logger.warning(f"[{job_id}] {parsed.error}")
            return parsed

        return Ok(ExecutionResult(
            payload=parsed.value,
            stdout=output.stdout,
            stderr=output.stderr,
            exit_code=output.exit_code,
        ))


def build_executor_from_settings(settings) -> SandboxExecutor:
    limits = SandboxLimits(
        timeout_ms=settings.CONTAINER_TIMEOUT_MS,
        memory_mb=settings.CONTAINER_MEMORY_LIMIT_MB,
        cpu_limit=settings.CONTAINER_CPU_LIMIT,
        network_mode=settings.CONTAINER_NETWORK_MODE,
    )
    extra_env = {
        "FETCH_TIMEOUT_MS": str(settings.FETCH_TIMEOUT_MS),
        "MAX_REDIRECT_DEPTH": str(settings.MAX_REDIRECT_DEPTH),
        "SANDBOX_ANALYZE": "true" if settings.SANDBOX_ANALYZE else "false",
    }
    if settings.SANDBOX_ANALYZE:
        extra_env.update({
            "RISK_ANALYZER_URL": settings.RISK_ANALYZER_URL,
            "RISK_ANALYZER_API_KEY": settings.RISK_ANALYZER_API_KEY,
            "OPENROUTER_API_KEY": settings.OPENROUTER_API_KEY,
        })

    if settings.SANDBOX_BACKEND == "subprocess":
        from safescan.features.scan.services.sandbox.subprocess_runner import SubprocessSandboxRunner

        runner = SubprocessSandboxRunner()
    else:
        from safescan.features.scan.services.sandbox.docker_runner import DockerSandboxRunner

        runner = DockerSandboxRunner(image=settings.FETCHER_IMAGE, socket_path=settings.DOCKER_SOCKET_PATH)

    return SandboxExecutor(runner=runner, limits=limits, extra_env=extra_env)
