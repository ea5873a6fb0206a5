"""
Two-factor configuration.

Values come from environment variables with production defaults.
"""
import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class TwoFactorSettings:
    issuer: str = "GATEKEEPER"

    # Temporary login tokens (login -> 2FA challenge)
    temp_token_ttl_seconds: int = 300
    temp_token_capacity: int = 1000

    # Setup tokens (setup -> TOTP verification)
    setup_token_ttl_seconds: int = 900
    setup_token_capacity: int = 500

    backup_code_count: int = 10
    totp_window: int = 1

    token_store_backend: str = "memory"  # memory | redis
    sweep_interval_seconds: int = 60

    notify_max_attempts: int = 2
    notify_retry_delay_seconds: float = 1.0

    @classmethod
    def from_env(cls) -> "TwoFactorSettings":
        return cls(
            issuer=os.getenv("APP_NAME", "GATEKEEPER"),
            temp_token_ttl_seconds=int(os.getenv("TWOFA_TEMP_TOKEN_TTL", "300")),
            temp_token_capacity=int(os.getenv("TWOFA_TEMP_TOKEN_CAPACITY", "1000")),
            setup_token_ttl_seconds=int(os.getenv("TWOFA_SETUP_TOKEN_TTL", "900")),
            setup_token_capacity=int(os.getenv("TWOFA_SETUP_TOKEN_CAPACITY", "500")),
            backup_code_count=int(os.getenv("TWOFA_BACKUP_CODE_COUNT", "10")),
            totp_window=int(os.getenv("TWOFA_TOTP_WINDOW", "1")),
            token_store_backend=os.getenv("TOKEN_STORE_BACKEND", "memory").lower(),
            sweep_interval_seconds=int(os.getenv("TOKEN_SWEEP_INTERVAL", "60")),
            notify_max_attempts=int(os.getenv("NOTIFY_MAX_ATTEMPTS", "2")),
            notify_retry_delay_seconds=float(os.getenv("NOTIFY_RETRY_DELAY", "1.0")),
        )


@lru_cache(maxsize=1)
def get_settings() -> TwoFactorSettings:
    """Get settings built from the environment (cached)."""
    return TwoFactorSettings.from_env()
