"""Health check endpoints."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from gtovantage.api.deps import VerificationServiceDep
from gtovantage.config import settings
from gtovantage.services.token_store import StorageUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def health_check():
    """Basic health check - just confirms the service is running."""
    return {"status": "ok"}


@router.get("/store")
async def health_check_store(service: VerificationServiceDep):
    """Health check with token store connectivity."""
    try:
        await service.store.ping()
        return {"status": "ok", "store": settings.token_store_backend}
    except StorageUnavailableError as e:
        logger.error(f"Token store health check failed: {e!r}")
        return JSONResponse(
            status_code=503,
            content={"status": "error", "store": settings.token_store_backend},
        )


@router.get("/ready")
async def readiness_check(service: VerificationServiceDep):
    """Readiness check - confirms the token store is usable and reports its contents.

    Returns 503 if the store is unavailable.
    """
    try:
        stats = await service.stats()
    except StorageUnavailableError as e:
        logger.error(f"Token store readiness check failed: {e!r}")
        return JSONResponse(
            status_code=503,
            content={"status": "error", "store": "unavailable"},
        )

    return {
        "status": "ok",
        "store": settings.token_store_backend,
        "tokens": {
            "total": stats.total,
            "active": stats.active,
            "used": stats.used,
            "expired": stats.expired,
        },
    }
