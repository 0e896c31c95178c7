"""
Orchestrator-facing scan API: start a scan, look one up.

Authentication happens outside; callers pass the already-identified user id.
"""
import enum
from typing import Any, Dict, List

from safescan.features.scan.errors import ScanError, ScanErrorCode
from safescan.features.scan.schemas.scan import QueueMessage
from safescan.features.scan.services.cache.result_cache import ResultStore
from safescan.features.scan.services.credits.ledger import CreditLedger
from safescan.features.scan.services.jobs.job_store import JobStore, ScanJobSnapshot
from safescan.features.scan.services.orchestration.queue import QueueError, ScanQueue
from safescan.platform.logger import get_logger
from safescan.platform.result import Err, Ok, Result
from safescan.platform.utils.url_validator import validate_url

logger = get_logger(__name__)


class ResultAccessPolicy(str, enum.Enum):
    OWNER_ONLY = "owner"
    ANY_USER = "any"


def job_view(job: ScanJobSnapshot) -> Dict[str, Any]:
    return {
        "id": job.id,
        "user_id": job.user_id,
        "url": job.url,
        "state": job.state.value,
        "version": job.version,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
    }


class ScanService:
    def __init__(
        self,
        ledger: CreditLedger,
        job_store: JobStore,
        result_store: ResultStore,
        queue: ScanQueue,
        credit_cost: int = 1,
    ):
        self.ledger = ledger
        self.job_store = job_store
        self.result_store = result_store
        self.queue = queue
        self.credit_cost = credit_cost

    def create_scan_job(self, user_id: str, url: str) -> Result[Dict[str, str], ScanError]:
        is_valid, normalized_url, error_message = validate_url(url)
        if not is_valid:
            return Err(ScanError(
                code=ScanErrorCode.VALIDATION_ERROR,
                message=f"Invalid URL: {error_message}",
            ))

        reserved = self.ledger.reserve_and_create_job(user_id, normalized_url, self.credit_cost)
        if reserved.is_err():
            return reserved
        job = reserved.value

        try:
            self.queue.enqueue(QueueMessage(job_id=job.id, url=job.url, user_id=user_id))
        except QueueError as e:
            # Credits stay debited and the job stays QUEUED.
            logger.error(f"[{job.id}] Failed to enqueue scan job: {e}")
            return Err(ScanError(
                code=ScanErrorCode.QUEUE_ERROR,
                message="Failed to enqueue scan job",
                details={"job_id": job.id, "error": str(e)},
            ))

        return Ok({"id": job.id, "state": job.state.value})

    def get_scan_job(
        self,
        job_id: str,
        requester_id: str,
        access: ResultAccessPolicy = ResultAccessPolicy.OWNER_ONLY,
    ) -> Result[Dict[str, Any], ScanError]:
        found = self.job_store.get(job_id)
        if found.is_err():
            return found
        job = found.value

        if ResultAccessPolicy(access) == ResultAccessPolicy.OWNER_ONLY and job.user_id != requester_id:
            logger.warning(f"[{job_id}] User {requester_id} is not allowed to read this scan")
            return Err(ScanError(
                code=ScanErrorCode.FORBIDDEN,
                message="You do not have access to this scan job",
            ))

        view = job_view(job)
        view["result"] = self.result_store.get(job_id)
        return Ok(view)

    def list_scan_jobs(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        return [job_view(job) for job in self.job_store.list_for_user(user_id, limit=limit)]
