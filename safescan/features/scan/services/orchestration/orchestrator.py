"""
Scan Orchestrator

Drives one queued job through its lifecycle:

    QUEUED -> FETCHING -> ANALYZING -> COMPLETED
                  |           |
                  +-----------+--> FAILED / TIMED_OUT

``process`` maps one queue message to one outcome (ack, retry after a delay,
or dead-letter). It never talks to the queue transport itself; the worker task
turns the outcome into whatever the broker understands.

Delivery is at-least-once. A duplicate delivery loses the claim (the job's
version has moved on) and is acknowledged without doing any work.
"""
import enum
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from safescan.features.scan.errors import ScanError, ScanErrorCode, database_error
from safescan.features.scan.models.scan_job import TERMINAL_STATES, ScanJobState
from safescan.features.scan.schemas.audit import AuditLogCreate, RiskAssessmentSummary
from safescan.features.scan.schemas.scan import (
    QueueMessage,
    RiskAssessment,
    SandboxPayload,
    ScanResultPayload,
)
from safescan.features.scan.services.analysis.risk_analyzer import RiskAnalyzer
from safescan.features.scan.services.audit.audit_log import AuditLog
from safescan.features.scan.services.cache.result_cache import DEFAULT_TTL_SECONDS, ResultCache, result_row
from safescan.features.scan.services.jobs.job_store import JobStore, ScanJobSnapshot
from safescan.features.scan.services.sandbox.executor import SandboxExecutor
from safescan.platform.logger import get_logger, short_hash
from safescan.platform.result import Err, Ok, Result

logger = get_logger(__name__)

# Losing one of these after the claim means another delivery owns the job.
_LOST_OWNERSHIP = (ScanErrorCode.VERSION_CONFLICT, ScanErrorCode.INVALID_TRANSITION)


class OutcomeAction(str, enum.Enum):
    ACK = "ack"
    RETRY = "retry"
    DEAD_LETTER = "dead_letter"


@dataclass(frozen=True)
class MessageOutcome:
    action: OutcomeAction
    delay_seconds: Optional[float] = None
    error: Optional[ScanError] = None

    @classmethod
    def ack(cls, error: Optional[ScanError] = None) -> "MessageOutcome":
        return cls(action=OutcomeAction.ACK, error=error)

    @classmethod
    def retry(cls, delay_seconds: float, error: ScanError) -> "MessageOutcome":
        return cls(action=OutcomeAction.RETRY, delay_seconds=delay_seconds, error=error)

    @classmethod
    def dead_letter(cls, error: ScanError) -> "MessageOutcome":
        return cls(action=OutcomeAction.DEAD_LETTER, error=error)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay_seconds: float = 30.0

    def decide(self, error: ScanError, attempt: int) -> MessageOutcome:
        if error.retryable and attempt < self.max_attempts:
            return MessageOutcome.retry(self.delay_seconds, error)
        return MessageOutcome.dead_letter(error)


class ScanOrchestrator:
    def __init__(
        self,
        job_store: JobStore,
        executor: SandboxExecutor,
        analyzer: RiskAnalyzer,
        result_cache: ResultCache,
        audit_log: AuditLog,
        retry_policy: Optional[RetryPolicy] = None,
        cache_ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ):
        self.job_store = job_store
        self.executor = executor
        self.analyzer = analyzer
        self.result_cache = result_cache
        self.audit_log = audit_log
        self.retry_policy = retry_policy or RetryPolicy()
        self.cache_ttl_seconds = cache_ttl_seconds

    def process(self, message: QueueMessage, attempt: int = 1) -> MessageOutcome:
        job_id = message.job_id
        logger.info(f"[{job_id}] Processing scan of {message.url} (attempt {attempt})")

        current = self.job_store.get(job_id)
        if current.is_err():
            if current.error.code == ScanErrorCode.NOT_FOUND:
                logger.warning(f"[{job_id}] Job not found, dropping message")
                return MessageOutcome.ack(current.error)
            return self.retry_policy.decide(current.error, attempt)
        job = current.value

        # ---- Claim ----
        claimed = self.job_store.transition(job_id, job.version, ScanJobState.FETCHING)
        if claimed.is_err():
            if claimed.error.code in _LOST_OWNERSHIP:
                logger.info(f"[{job_id}] Already claimed or finished ({job.state.value}), skipping duplicate delivery")
                return MessageOutcome.ack(claimed.error)
            return self.retry_policy.decide(claimed.error, attempt)
        version = claimed.value.version

        try:
            return self._run_claimed(job, version, attempt)
        except Exception as e:
            # Whatever escapes here must not leave the job stuck in a non-terminal state.
            logger.exception(f"[{job_id}] Unexpected failure after claim: {e}")
            if isinstance(e, SQLAlchemyError):
                error = database_error(e)
            else:
                error = ScanError(
                    code=ScanErrorCode.SANDBOX_ERROR,
                    message="Unexpected failure while processing scan",
                    details={"error": f"{type(e).__name__}: {e}"},
                )
            return self._fail(job_id, error, attempt)

    def _run_claimed(self, job: ScanJobSnapshot, version: int, attempt: int) -> MessageOutcome:
        job_id = job.id

        # ---- Fetch in the sandbox ----
        execution = self.executor.execute(job_id, job.url)
        if execution.is_err():
            return self._fail(job_id, execution.error, attempt)
        payload = execution.value.payload
        logger.info(
            f"[{job_id}] Fetched {job.url}: status {payload.http_status}, hash {short_hash(payload.content_hash)}"
        )

        analyzing = self.job_store.transition(job_id, version, ScanJobState.ANALYZING)
        if analyzing.is_err():
            return self._after_claim_error(job_id, analyzing.error, attempt)
        version = analyzing.value.version

        # ---- Assessment ----
        assessment = self._assess(job_id, job.url, payload)
        if assessment.is_err():
            return self._fail(job_id, assessment.error, attempt)

        result = self._combine(payload, assessment.value)
        if result.is_err():
            return self._fail(job_id, result.error, attempt)
        scan_result = result.value

        # ---- Persist ----
        self._write_audit(job_id, job.url, scan_result)

        completed = self.job_store.transition(
            job_id, version, ScanJobState.COMPLETED, attach=[result_row(job_id, scan_result)]
        )
        if completed.is_err():
            return self._after_claim_error(job_id, completed.error, attempt)

        logger.info(f"[{job_id}] Scan completed: risk score {scan_result.risk_score}")
        return MessageOutcome.ack()

    def _assess(self, job_id: str, url: str, payload: SandboxPayload) -> Result[RiskAssessment, ScanError]:
        """Assessment from the unit itself, else the cache, else the analyzer."""
        if payload.has_assessment:
            logger.info(f"[{job_id}] Using assessment produced inside the sandbox")
            return Ok(payload.assessment())

        try:
            cached = self.result_cache.lookup(payload.content_hash, ttl_seconds=self.cache_ttl_seconds)
        except SQLAlchemyError as e:
            logger.error(f"[{job_id}] Cache lookup failed: {e}")
            return Err(database_error(e))

        if cached is not None:
            logger.info(f"[{job_id}] Reusing assessment from job {cached.job_id}")
            try:
                return Ok(cached.assessment())
            except ValidationError as e:
                logger.warning(f"[{job_id}] Cached result for job {cached.job_id} is unusable: {e}")

        return self.analyzer.analyze(payload.analysis_request(url))

    def _combine(self, payload: SandboxPayload, assessment: RiskAssessment) -> Result[ScanResultPayload, ScanError]:
        try:
            return Ok(ScanResultPayload(
                **assessment.model_dump(),
                content_hash=payload.content_hash,
                http_status=payload.http_status,
                http_headers=payload.http_headers,
                content_type=payload.content_type,
            ))
        except ValidationError as e:
            return Err(ScanError(
                code=ScanErrorCode.VALIDATION_ERROR,
                message="Scan result failed schema validation",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ))

    def _write_audit(self, job_id: str, url: str, result: ScanResultPayload) -> None:
        entry = AuditLogCreate(
            scan_job_id=job_id,
            url_accessed=url,
            content_hash=result.content_hash,
            http_status=result.http_status,
            http_headers=result.http_headers,
            content_type=result.content_type,
            risk_assessment_summary=RiskAssessmentSummary(
                risk_score=result.risk_score,
                categories=list(result.categories),
                confidence_score=result.confidence_score,
            ),
        )
        written = self.audit_log.append(entry)
        if written.is_err():
            # The audit trail must not block a completed scan.
            logger.error(f"[{job_id}] Failed to write audit log: {written.error}")

    def _after_claim_error(self, job_id: str, error: ScanError, attempt: int) -> MessageOutcome:
        if error.code in _LOST_OWNERSHIP:
            logger.warning(f"[{job_id}] Job moved on underneath this worker: {error.message}")
            return MessageOutcome.ack(error)
        return self._fail(job_id, error, attempt)

    def _fail(self, job_id: str, error: ScanError, attempt: int) -> MessageOutcome:
        """Best-effort move to FAILED or TIMED_OUT at the freshest version, then apply the retry policy."""
        logger.error(f"[{job_id}] Scan failed: {error}")
        target = ScanJobState.TIMED_OUT if error.is_timeout else ScanJobState.FAILED

        fresh = self.job_store.get(job_id)
        if fresh.is_err():
            logger.error(f"[{job_id}] Could not re-read job to mark it {target.value}: {fresh.error}")
        elif fresh.value.state in TERMINAL_STATES:
            logger.info(f"[{job_id}] Job already {fresh.value.state.value}")
        else:
            marked = self.job_store.transition(job_id, fresh.value.version, target)
            if marked.is_err():
                logger.error(f"[{job_id}] Could not mark job {target.value}: {marked.error}")

        return self.retry_policy.decide(error, attempt)
