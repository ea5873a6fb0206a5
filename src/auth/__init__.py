"""
Two-factor authentication for GATEKEEPER.

This package provides:
- TOTP secrets, codes and provisioning URIs
- Backup codes (bcrypt hashed, single use)
- Expiring token stores for login challenges and setup
- Setup and login state machines for Local and OAuth accounts
"""
from .errors import TwoFactorError
from .models import (
    Account,
    AccountKind,
    Credential,
    LoginResult,
    OAuthTokens,
    SecuritySettings,
    SetupResult,
    TwoFactorStatus,
)
from .service import TwoFactorService, create_token_stores

__all__ = [
    "Account",
    "AccountKind",
    "Credential",
    "LoginResult",
    "OAuthTokens",
    "SecuritySettings",
    "SetupResult",
    "TwoFactorError",
    "TwoFactorService",
    "TwoFactorStatus",
    "create_token_stores",
]
