from functools import lru_cache
from typing import Any, Dict

from celery.exceptions import Reject
from pydantic import ValidationError

from safescan.features.scan.errors import ScanTaskError
from safescan.features.scan.schemas.scan import QueueMessage
from safescan.features.scan.services.analysis.risk_analyzer import build_analyzer_from_settings
from safescan.features.scan.services.audit.audit_log import AuditLog
from safescan.features.scan.services.cache.result_cache import ResultCache
from safescan.features.scan.services.jobs.job_store import JobStore
from safescan.features.scan.services.orchestration.orchestrator import (
    OutcomeAction,
    RetryPolicy,
    ScanOrchestrator,
)
from safescan.features.scan.services.sandbox.executor import build_executor_from_settings
from safescan.platform.celery_app import celery_app
from safescan.platform.config import settings
from safescan.platform.db.session import get_session_factory
from safescan.platform.logger import get_logger

logger = get_logger(__name__)


@lru_cache
def get_orchestrator() -> ScanOrchestrator:
    """One orchestrator per worker process, wired from settings."""
    session_factory = get_session_factory()
    return ScanOrchestrator(
        job_store=JobStore(session_factory),
        executor=build_executor_from_settings(settings),
        analyzer=build_analyzer_from_settings(settings),
        result_cache=ResultCache(session_factory, default_ttl_seconds=settings.RESULT_CACHE_TTL_SECONDS),
        audit_log=AuditLog(session_factory),
        retry_policy=RetryPolicy(
            max_attempts=settings.SCAN_MAX_ATTEMPTS,
            delay_seconds=settings.SCAN_RETRY_DELAY_SECONDS,
        ),
        cache_ttl_seconds=settings.RESULT_CACHE_TTL_SECONDS,
    )


@celery_app.task(
    bind=True,
    name="safescan.features.scan.workers.tasks.process_scan_job",
    max_retries=None,
    acks_late=True,
)
def process_scan_job(self, message: Dict[str, Any]) -> Dict[str, Any]:
    """
    Run one scan job.

    Args:
        message: Queue body {jobId, url, userId}

    Returns:
        Dict with the job id and the outcome action
    """
    try:
        queue_message = QueueMessage.model_validate(message)
    except ValidationError as e:
        logger.error(f"Malformed scan message, dead-lettering: {e}")
        raise Reject(f"malformed message: {e}", requeue=False)

    job_id = queue_message.job_id
    attempt = self.request.retries + 1
    outcome = get_orchestrator().process(queue_message, attempt=attempt)

    if outcome.action == OutcomeAction.RETRY:
        logger.warning(
            f"[{job_id}] Attempt {attempt} failed ({outcome.error}), retrying in {outcome.delay_seconds}s"
        )
        raise self.retry(exc=ScanTaskError(outcome.error), countdown=outcome.delay_seconds)

    if outcome.action == OutcomeAction.DEAD_LETTER:
        logger.error(f"[{job_id}] Giving up after attempt {attempt}: {outcome.error}")
        raise Reject(str(ScanTaskError(outcome.error)), requeue=False)

    return {"job_id": job_id, "outcome": outcome.action.value}
