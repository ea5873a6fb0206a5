"""
FastAPI Dependencies for GATEKEEPER API.

Provides:
- Database connections
- Redis client
- Two-factor service wiring (token stores, ownership verifier, notifications)
"""
import os
import logging
from typing import Optional

import redis

from ..auth.config import get_settings
from ..auth.google import GoogleTokenOwnershipVerifier
from ..auth.mfa import QrCodeRenderer
from ..auth.notifications import LoggingNotificationSink, SmtpNotificationSink
from ..auth.ports import NotificationSink
from ..auth.service import TwoFactorService, create_token_stores
from ..database.auth_db import AuthDB, get_auth_db
from ..utils.secrets import get_smtp_password

logger = logging.getLogger(__name__)


# ============================================
# Redis Client
# ============================================

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """
    Get Redis client singleton.

    Returns None if Redis is not configured or unavailable.
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    host = os.getenv("REDIS_HOST", "localhost")
    port = int(os.getenv("REDIS_PORT", "6379"))
    password = os.getenv("REDIS_PASSWORD", "") or None
    db = int(os.getenv("REDIS_DB", "0"))

    try:
        _redis_client = redis.Redis(
            host=host,
            port=port,
            password=password,
            db=db,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        # Test connection
        _redis_client.ping()
        logger.info(f"Redis connected: {host}:{port}")
        return _redis_client
    except redis.ConnectionError as e:
        logger.warning(f"Redis connection failed: {e}. Token stores will use in-memory fallback.")
        _redis_client = None
        return None


# ============================================
# Database Dependencies
# ============================================

def get_db() -> AuthDB:
    """Get database connection."""
    return get_auth_db()


# ============================================
# Two-Factor Service
# ============================================

def build_notification_sink() -> NotificationSink:
    """Pick the notification backend from NOTIFY_BACKEND (log | smtp)."""
    app_name = get_settings().issuer
    backend = os.getenv("NOTIFY_BACKEND", "log").lower()

    if backend == "smtp":
        host = os.getenv("SMTP_HOST")
        if host:
            username = os.getenv("SMTP_USERNAME") or None
            return SmtpNotificationSink(
                host=host,
                from_email=os.getenv("SMTP_FROM", f"no-reply@{host}"),
                port=int(os.getenv("SMTP_PORT", "587")),
                username=username,
                # Authenticated relays cannot run without their password
                password=get_smtp_password(required=username is not None),
                use_tls=os.getenv("SMTP_USE_TLS", "true").lower() == "true",
                timeout=float(os.getenv("SMTP_TIMEOUT", "10")),
                app_name=app_name,
            )
        logger.warning("NOTIFY_BACKEND=smtp but SMTP_HOST is not set. Notifications will be logged only.")

    return LoggingNotificationSink(app_name=app_name)


_two_factor_service: Optional[TwoFactorService] = None


def get_two_factor_service() -> TwoFactorService:
    """Get singleton two-factor service."""
    global _two_factor_service
    if _two_factor_service is None:
        settings = get_settings()
        db = get_db()

        redis_client = get_redis_client() if settings.token_store_backend == "redis" else None
        temp_tokens, setup_tokens = create_token_stores(settings, redis_client)

        _two_factor_service = TwoFactorService(
            account_store=db,
            ownership_verifier=GoogleTokenOwnershipVerifier(db),
            notification_sink=build_notification_sink(),
            qr_renderer=QrCodeRenderer(),
            temp_tokens=temp_tokens,
            setup_tokens=setup_tokens,
            settings=settings,
        )
    return _two_factor_service
