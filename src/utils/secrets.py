"""
Secrets management utilities for GATEKEEPER.

Secrets (database password, SMTP password) can come from:
1. A file named by {NAME}_FILE (Docker/Kubernetes secrets mounted anywhere)
2. The {NAME} environment variable (development)
3. /run/secrets/{name} (Docker secrets default path)

Usage:
    from src.utils.secrets import get_secret

    smtp_password = get_secret("SMTP_PASSWORD")
"""
import os
import logging
from typing import Iterator, Optional, Tuple
from functools import lru_cache

logger = logging.getLogger(__name__)

DOCKER_SECRETS_DIR = "/run/secrets"


def _read_secret_file(path: str) -> Optional[str]:
    try:
        with open(path, "r") as f:
            return f.read().strip()
    except OSError as e:
        logger.warning(f"Failed to read secret file {path}: {e}")
        return None


def _secret_sources(name: str) -> Iterator[Tuple[str, Optional[str]]]:
    """Yield (source, value) in priority order; value is None when the source is empty."""
    file_path = os.environ.get(f"{name}_FILE")
    if file_path and os.path.isfile(file_path):
        yield "file", _read_secret_file(file_path)

    yield "environment", os.environ.get(name) or None

    docker_path = os.path.join(DOCKER_SECRETS_DIR, name.lower())
    if os.path.isfile(docker_path):
        yield "Docker secrets", _read_secret_file(docker_path)


@lru_cache(maxsize=32)
def get_secret(name: str, default: Optional[str] = None) -> Optional[str]:
    """
    Get a secret value from the first source that has one.

    Args:
        name: Secret name (e.g., "POSTGRES_PASSWORD")
        default: Value returned when no source has the secret

    Returns:
        Secret value or default
    """
    for source, value in _secret_sources(name):
        if value:
            logger.debug(f"Loaded secret {name} from {source}")
            return value

    logger.debug(f"Secret {name} not found, using default")
    return default


def get_required_secret(name: str) -> str:
    """
    Get a required secret, raising an error if not found.

    Raises:
        ValueError: If secret not found
    """
    value = get_secret(name)
    if value is None:
        raise ValueError(
            f"Required secret '{name}' not found. "
            f"Set {name} or {name}_FILE environment variable."
        )
    return value


def get_postgres_password() -> str:
    """PostgreSQL password (empty for local trust auth)."""
    return get_secret("POSTGRES_PASSWORD", "")


def get_smtp_password(required: bool = False) -> Optional[str]:
    if required:
        return get_required_secret("SMTP_PASSWORD")
    return get_secret("SMTP_PASSWORD")


def mask_secret(secret: str, visible_chars: int = 4) -> str:
    """
    Mask a secret or token for safe logging.

    Returns:
        Masked string like "abc...xyz", or "***" for short values
    """
    if not secret or len(secret) <= visible_chars * 2:
        return "***"
    return f"{secret[:visible_chars]}...{secret[-visible_chars:]}"
