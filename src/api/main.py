"""
GATEKEEPER REST API - Main Application.

FastAPI-based REST API for two-factor authentication.

Usage:
    # Development
    uvicorn src.api.main:app --reload --port 8000

    # Production
    uvicorn src.api.main:app --host 0.0.0.0 --port 8000 --workers 4
"""
import os
import time
import uuid
import asyncio
import logging
from http import HTTPStatus
from typing import Optional
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from .routes import health_router, twofa_router
from ..auth.errors import TwoFactorError
from ..auth.token_store import sweep_expired_tokens

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
)


class RequestIdFilter(logging.Filter):
    """Default request_id on records that were not logged with one."""
    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = '-'
        return True


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format=LOG_FORMAT,
    )
    # Handler-level so records propagated from child loggers are covered too
    for handler in logging.getLogger().handlers:
        handler.addFilter(RequestIdFilter())


configure_logging()
logger = logging.getLogger(__name__)

# API metadata
API_TITLE = "GATEKEEPER API"
API_DESCRIPTION = """
**Two-Factor Authentication Service**

TOTP-based second factor for Local (password) and OAuth (Google) accounts:

- **Setup** - Secret, QR code and one-time backup codes, confirmed with a first code
- **Login challenge** - Temporary token issued after the first factor, redeemed with a TOTP or backup code
- **Management** - Status, disable and backup code regeneration

## Ownership checks

Privileged changes require proof of ownership:

- Local accounts: `password`
- OAuth accounts: `oauth_access_token` (verified with the provider)
"""
API_VERSION = os.getenv("APP_VERSION", "0.1.0")

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    # Responses carry secrets and backup codes
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup: database schema, expired-token sweeper.
    Shutdown: stop the sweeper, flush pending notifications.
    """
    logger.info(f"Starting GATEKEEPER API v{API_VERSION}")

    try:
        from ..database.auth_db import get_auth_db
        get_auth_db().init_schema()
    except Exception as e:
        logger.warning(f"Database initialization skipped: {e}")

    from ..auth.config import get_settings
    from .deps import get_two_factor_service
    service = get_two_factor_service()
    sweep_task = asyncio.create_task(
        sweep_expired_tokens(
            [service.temp_tokens, service.setup_tokens],
            get_settings().sweep_interval_seconds,
        )
    )

    yield

    logger.info("Shutting down GATEKEEPER API")
    sweep_task.cancel()
    with suppress(asyncio.CancelledError):
        await sweep_task
    await service.drain_notifications()


def error_response(status_code: int, detail: Optional[str], code: str, **extra) -> JSONResponse:
    """Build the standard {"error", "detail", "code"} envelope."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": HTTPStatus(status_code).phrase,
            "detail": detail,
            "code": code,
            **extra,
        },
    )


async def request_context_middleware(request: Request, call_next):
    """Request ID, timing log line and security headers for every response."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
    request.state.request_id = request_id
    started = time.time()

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"[{request_id}] Request failed: {e}", exc_info=True)
        raise

    elapsed_ms = (time.time() - started) * 1000
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.2f}"
    response.headers.update(SECURITY_HEADERS)

    # Health probes are too noisy to log
    if not request.url.path.startswith("/health"):
        logger.info(
            f"[{request_id}] {request.method} {request.url.path} "
            f"-> {response.status_code} ({elapsed_ms:.1f}ms)"
        )
    return response


async def two_factor_error_handler(request: Request, exc: TwoFactorError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, f"[{request_id}] {type(exc).__name__}: {exc.message}")
    return error_response(exc.status_code, exc.message, exc.code)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = [
        f"{' -> '.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, "; ".join(problems), "VALIDATION_ERROR")


async def unhandled_error_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(f"[{request_id}] Unhandled exception: {exc}", exc_info=True)
    detail = str(exc) if os.getenv("APP_ENV") == "development" else None
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, detail, "INTERNAL_ERROR", request_id=request_id)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance.
    """
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.middleware("http")(request_context_middleware)

    app.add_exception_handler(TwoFactorError, two_factor_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(health_router)
    app.include_router(twofa_router)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": API_TITLE,
            "version": API_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "src.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
