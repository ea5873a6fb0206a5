"""
Health Check Endpoints.

Provides health status for the API and its dependencies.
"""
import os
import time
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..models import HealthStatus, TokenStoreHealth
from ..deps import get_db, get_redis_client, get_two_factor_service
from ...auth.config import get_settings
from ...auth.service import TwoFactorService
from ...database.auth_db import AuthDB

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])

# Version from environment or default
VERSION = os.getenv("APP_VERSION", "0.1.0")


@router.get("", response_model=HealthStatus)
async def health_check(
    db: AuthDB = Depends(get_db),
    service: TwoFactorService = Depends(get_two_factor_service),
):
    """
    Basic health check endpoint.

    Returns overall system status and token store occupancy.
    """
    services = {}
    overall_healthy = True

    # Check database
    try:
        start = time.time()
        db.ping()
        latency = (time.time() - start) * 1000
        services["database"] = f"healthy ({latency:.1f}ms)"
    except Exception as e:
        services["database"] = f"unhealthy: {str(e)}"
        overall_healthy = False

    # Check Redis (only when token stores use it)
    if get_settings().token_store_backend == "redis":
        try:
            redis_client = get_redis_client()
            if redis_client:
                start = time.time()
                redis_client.ping()
                latency = (time.time() - start) * 1000
                services["redis"] = f"healthy ({latency:.1f}ms)"
            else:
                services["redis"] = "fallback_mode (in-memory)"
        except Exception as e:
            services["redis"] = f"unhealthy: {str(e)}"
            # Redis failure is not critical - token stores fall back to memory
    else:
        services["redis"] = "not_configured"

    token_stores = {
        name: TokenStoreHealth(size=stats.size, capacity=stats.capacity)
        for name, stats in service.token_store_stats().items()
    }

    return HealthStatus(
        status="healthy" if overall_healthy else "unhealthy",
        version=VERSION,
        services=services,
        token_stores=token_stores,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/live")
async def liveness():
    """
    Kubernetes liveness probe.

    Returns 200 if the service is running.
    """
    return {"status": "alive"}


@router.get("/ready")
async def readiness(db: AuthDB = Depends(get_db)):
    """
    Kubernetes readiness probe.

    Returns 200 if the service is ready to accept traffic.
    """
    try:
        db.ping()
        return {"status": "ready"}
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not ready", "error": str(e)})
