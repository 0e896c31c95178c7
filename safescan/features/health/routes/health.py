from fastapi import APIRouter, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from safescan.platform.config import settings
from safescan.platform.db.session import get_session_factory
from safescan.platform.logger import get_logger
from safescan.platform.response import api_response

logger = get_logger(__name__)

router = APIRouter()


def database_reachable() -> bool:
    try:
        with get_session_factory()() as db:
            db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Health check could not reach the database: {e}")
        return False


@router.get("/health", tags=["health"])
async def health_check():
    if not database_reachable():
        return api_response(
            data={"status": "degraded", "service": settings.APP_NAME, "database": "unreachable"},
            message="Database is unreachable",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return api_response(
        data={"status": "ok", "service": settings.APP_NAME, "database": "ok"},
        message="Service is healthy",
        status_code=status.HTTP_200_OK,
    )
