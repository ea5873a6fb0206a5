"""
Error taxonomy for the two-factor authentication core.

Every failure an operation can report is one of the classes below. The API layer
maps them to JSON responses using ``status_code`` and ``code``.
"""
from typing import Optional


class TwoFactorError(Exception):
    """Base class for all two-factor errors."""

    status_code = 400
    code = "TWO_FACTOR_ERROR"
    default_message = "Two-factor authentication error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ============================================
# Credential checks
# ============================================

class MissingCredential(TwoFactorError):
    status_code = 400
    code = "MISSING_DATA"
    default_message = "Credential is required"


class InvalidCredential(TwoFactorError):
    status_code = 401
    code = "AUTH_FAILED"
    default_message = "Password is incorrect"


class OwnershipMismatch(TwoFactorError):
    """OAuth access token does not belong to the account."""

    status_code = 403
    code = "AUTH_FAILED"

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or "unknown"
        super().__init__(f"OAuth token verification failed: {self.reason}")


class UnsupportedAccountKind(TwoFactorError):
    status_code = 400
    code = "INVALID_REQUEST"
    default_message = "Unsupported account type"


# ============================================
# Token and code checks
# ============================================

# Expired tokens, unknown tokens and wrong codes share one public shape so a caller
# cannot tell whether a token ever existed.
_CHALLENGE_FAILED_CODE = "TWO_FACTOR_FAILED"
_CHALLENGE_FAILED_MESSAGE = "Invalid two-factor code or expired token"


class InvalidOrExpiredToken(TwoFactorError):
    status_code = 401
    code = _CHALLENGE_FAILED_CODE
    default_message = _CHALLENGE_FAILED_MESSAGE


class InvalidCode(TwoFactorError):
    status_code = 401
    code = _CHALLENGE_FAILED_CODE
    default_message = _CHALLENGE_FAILED_MESSAGE


class TokenAccountMismatch(TwoFactorError):
    status_code = 401
    code = "TOKEN_INVALID"
    default_message = "Setup token does not belong to this account"


class EmailMismatch(TwoFactorError):
    status_code = 401
    code = "AUTH_FAILED"
    default_message = "Token account mismatch"


# ============================================
# Account state
# ============================================

class NotEnabled(TwoFactorError):
    status_code = 400
    code = "INVALID_REQUEST"
    default_message = "Two-factor authentication is not enabled for this account"


class AccountNotFound(TwoFactorError):
    status_code = 404
    code = "USER_NOT_FOUND"
    default_message = "Account not found"


class AccountNotFoundOr2FADisabled(AccountNotFound):
    default_message = "Account not found or 2FA not enabled"


# ============================================
# Collaborator failures (surfaced, never retried)
# ============================================

class StorageFailure(TwoFactorError):
    """Wraps an account store error."""

    status_code = 503
    code = "STORAGE_FAILURE"
    default_message = "Account storage is unavailable"


class ProviderFailure(TwoFactorError):
    """Wraps an OAuth provider transport error."""

    status_code = 502
    code = "PROVIDER_FAILURE"
    default_message = "OAuth provider is unavailable"
