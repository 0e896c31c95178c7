from functools import lru_cache

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from safescan.features.scan.errors import ScanError, ScanErrorCode
from safescan.features.scan.schemas.scan import ScanCreateRequest
from safescan.features.scan.services.cache.result_cache import ResultStore
from safescan.features.scan.services.credits.ledger import CreditLedger
from safescan.features.scan.services.jobs.job_store import JobStore
from safescan.features.scan.services.orchestration.queue import CeleryScanQueue
from safescan.features.scan.services.scan.scan import ResultAccessPolicy, ScanService
from safescan.platform.config import settings
from safescan.platform.db.session import get_session_factory
from safescan.platform.logger import get_logger
from safescan.platform.response import api_error_response, api_response

logger = get_logger(__name__)

router = APIRouter(tags=["scans"])

ERROR_STATUS = {
    ScanErrorCode.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ScanErrorCode.INSUFFICIENT_CREDITS: status.HTTP_402_PAYMENT_REQUIRED,
    ScanErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ScanErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ScanErrorCode.QUEUE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@lru_cache
def get_scan_service() -> ScanService:
    session_factory = get_session_factory()
    job_store = JobStore(session_factory)
    return ScanService(
        ledger=CreditLedger(session_factory),
        job_store=job_store,
        result_store=ResultStore(session_factory),
        queue=CeleryScanQueue(),
        credit_cost=settings.SCAN_CREDIT_COST,
    )


def get_result_access_policy() -> ResultAccessPolicy:
    return ResultAccessPolicy(settings.RESULT_ACCESS_POLICY)


def get_current_user_id(x_user_id: str = Header(default="", alias="X-User-Id")) -> str:
    """Caller identity is established upstream and forwarded in X-User-Id."""
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return user_id


def error_response(error: ScanError):
    status_code = ERROR_STATUS.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(f"Scan request failed: {error} {error.details}")
    return api_error_response(code=error.code.value, message=error.message, status_code=status_code)


@router.post("/scans")
def create_scan(
    request: ScanCreateRequest,
    user_id: str = Depends(get_current_user_id),
    service: ScanService = Depends(get_scan_service),
):
    """Reserve credits, create a QUEUED scan job and enqueue it."""
    created = service.create_scan_job(user_id, request.url)
    if created.is_err():
        return error_response(created.error)
    return api_response(
        data=created.value,
        message="Scan job created",
        status_code=status.HTTP_202_ACCEPTED,
    )


@router.get("/scans")
def list_scans(
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    service: ScanService = Depends(get_scan_service),
):
    return api_response(
        data={"scans": service.list_scan_jobs(user_id, limit=limit)},
        message="Scan history retrieved",
    )


@router.get("/scans/{job_id}")
def get_scan(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ScanService = Depends(get_scan_service),
    access: ResultAccessPolicy = Depends(get_result_access_policy),
):
    found = service.get_scan_job(job_id, user_id, access)
    if found.is_err():
        return error_response(found.error)
    return api_response(data=found.value, message="Scan job retrieved")


@router.get("/credits")
def get_credits(
    user_id: str = Depends(get_current_user_id),
    service: ScanService = Depends(get_scan_service),
):
    balance = service.ledger.get_balance(user_id)
    if balance.is_err():
        return error_response(balance.error)
    return api_response(
        data={
            "balance": balance.value.balance,
            "user_id": user_id,
            "updated_at": balance.value.updated_at,
        },
        message="Credit balance retrieved",
    )
