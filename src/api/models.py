"""
Pydantic Models for GATEKEEPER API.

Request and response models for the two-factor endpoints.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict


# ============================================
# Credential Models
# ============================================

class CredentialRequest(BaseModel):
    """
    Proof of account ownership for privileged 2FA changes.

    Local accounts send their password, OAuth accounts a provider access token.
    """
    password: Optional[str] = Field(None, description="Account password (local accounts)")
    oauth_access_token: Optional[str] = Field(None, description="OAuth access token (OAuth accounts)")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "password": "securepassword123"
            }
        }
    )


# ============================================
# Setup Models
# ============================================

class TwoFactorStatusResponse(BaseModel):
    """Current 2FA state of an account."""
    enabled: bool
    backup_codes_remaining: int
    last_change: Optional[datetime] = None


class TwoFactorSetupResponse(BaseModel):
    """
    2FA setup response.

    The secret and backup codes are shown once. Store the backup codes securely;
    each can be used a single time.
    """
    secret: str
    qr_code: Optional[str] = Field(None, description="QR code as a PNG data URL")
    provisioning_uri: str
    backup_codes: List[str] = Field(..., description="One-time backup codes (store securely!)")
    setup_token: str = Field(..., description="Pass to /verify-setup with the first TOTP code")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "secret": "JBSWY3DPEHPK3PXP",
                "qr_code": "data:image/png;base64,iVBORw0KGgo...",
                "provisioning_uri": "otpauth://totp/GATEKEEPER:user@example.com?secret=JBSWY3DPEHPK3PXP&issuer=GATEKEEPER",
                "backup_codes": ["a1b2c3d4", "e5f6a7b8"],
                "setup_token": "3f9a...c21e"
            }
        }
    )


class VerifySetupRequest(BaseModel):
    """First TOTP code from the authenticator app plus the setup token."""
    token: str = Field(..., min_length=6, max_length=6, description="6-digit TOTP code")
    setup_token: str = Field(..., min_length=1)


class BackupCodesResponse(BaseModel):
    backup_codes: List[str]


class MessageResponse(BaseModel):
    success: bool = True
    message: str


# ============================================
# Login Challenge Models
# ============================================

class VerifyLoginRequest(BaseModel):
    """
    Second login step.

    Provide either a 6-digit TOTP code or an 8-character backup code.
    """
    token: str = Field(..., min_length=6, max_length=8, description="TOTP or backup code")
    temp_token: str = Field(..., min_length=1, description="Temporary token from the first login step")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "token": "123456",
                "temp_token": "9b1c...e7d0"
            }
        }
    )


class OAuthTokensResponse(BaseModel):
    access_token: str
    refresh_token: str
    user_info: Optional[Dict[str, Any]] = None


class VerifyLoginResponse(BaseModel):
    """Completed 2FA login. The caller creates the session from this."""
    account_id: str
    name: str
    account_type: str
    oauth_tokens: Optional[OAuthTokensResponse] = None
    needs_additional_scopes: bool = False
    missing_scopes: List[str] = []


# ============================================
# Error Models
# ============================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    code: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Unauthorized",
                "detail": "Invalid two-factor code or expired token",
                "code": "TWO_FACTOR_FAILED"
            }
        }
    )


# ============================================
# Health Models
# ============================================

class TokenStoreHealth(BaseModel):
    size: int
    capacity: int


class HealthStatus(BaseModel):
    """Health check response."""
    status: str
    version: str
    services: Dict[str, str]
    token_stores: Dict[str, TokenStoreHealth] = {}
    timestamp: datetime
