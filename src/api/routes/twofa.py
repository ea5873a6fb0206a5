"""
Two-Factor Authentication Endpoints.

Provides 2FA status, setup, verification, disable, backup code regeneration and the
second step of a 2FA login.

Failures are raised as TwoFactorError and rendered by the application's exception
handler, so handlers here stay thin.
"""
import logging

from fastapi import APIRouter, Depends

from ..models import (
    CredentialRequest,
    TwoFactorStatusResponse,
    TwoFactorSetupResponse,
    VerifySetupRequest,
    BackupCodesResponse,
    MessageResponse,
    VerifyLoginRequest,
    VerifyLoginResponse,
    OAuthTokensResponse,
    ErrorResponse,
)
from ..deps import get_two_factor_service
from ...auth.models import Credential
from ...auth.service import TwoFactorService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Two-Factor Authentication"])

CREDENTIAL_ERRORS = {
    400: {"model": ErrorResponse, "description": "Missing credential or 2FA not enabled"},
    401: {"model": ErrorResponse, "description": "Invalid password"},
    403: {"model": ErrorResponse, "description": "OAuth token does not belong to the account"},
    404: {"model": ErrorResponse, "description": "Account not found"},
}


def _credential(body: CredentialRequest) -> Credential:
    return Credential(password=body.password, oauth_access_token=body.oauth_access_token)


@router.get(
    "/accounts/{account_id}/twofa/status",
    response_model=TwoFactorStatusResponse,
    responses={404: {"model": ErrorResponse, "description": "Account not found"}},
)
async def get_status(
    account_id: str,
    service: TwoFactorService = Depends(get_two_factor_service),
):
    """Get the account's 2FA state and remaining backup code count."""
    result = await service.get_status(account_id)
    return TwoFactorStatusResponse(
        enabled=result.enabled,
        backup_codes_remaining=result.backup_codes_remaining,
        last_change=result.last_change,
    )


@router.post(
    "/accounts/{account_id}/twofa/setup",
    response_model=TwoFactorSetupResponse,
    responses=CREDENTIAL_ERRORS,
)
async def begin_setup(
    account_id: str,
    body: CredentialRequest,
    service: TwoFactorService = Depends(get_two_factor_service),
):
    """
    Start 2FA setup.

    Returns the TOTP secret, a QR code for authenticator apps, one-time backup codes
    and a setup token. 2FA stays disabled until /verify-setup succeeds.
    """
    result = await service.begin_setup(account_id, _credential(body))
    return TwoFactorSetupResponse(
        secret=result.secret,
        qr_code=result.qr_code_data_url,
        provisioning_uri=result.provisioning_uri,
        backup_codes=result.backup_codes,
        setup_token=result.setup_token,
    )


@router.post(
    "/accounts/{account_id}/twofa/verify-setup",
    response_model=MessageResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid code or expired setup token"},
        404: {"model": ErrorResponse, "description": "Account not found"},
    },
)
async def verify_setup(
    account_id: str,
    body: VerifySetupRequest,
    service: TwoFactorService = Depends(get_two_factor_service),
):
    """Confirm setup with the first code from the authenticator app and enable 2FA."""
    await service.confirm_setup(account_id, body.setup_token, body.token)
    return MessageResponse(message="2FA has been enabled successfully")


@router.post(
    "/accounts/{account_id}/twofa/disable",
    response_model=MessageResponse,
    responses=CREDENTIAL_ERRORS,
)
async def disable(
    account_id: str,
    body: CredentialRequest,
    service: TwoFactorService = Depends(get_two_factor_service),
):
    """Disable 2FA and discard the secret and backup codes."""
    await service.disable_2fa(account_id, _credential(body))
    return MessageResponse(message="2FA has been disabled successfully")


@router.post(
    "/accounts/{account_id}/twofa/backup-codes",
    response_model=BackupCodesResponse,
    responses=CREDENTIAL_ERRORS,
)
async def regenerate_backup_codes(
    account_id: str,
    body: CredentialRequest,
    service: TwoFactorService = Depends(get_two_factor_service),
):
    """
    Replace all backup codes with a fresh set.

    Previously issued codes stop working immediately.
    """
    codes = await service.regenerate_backup_codes(account_id, _credential(body))
    return BackupCodesResponse(backup_codes=codes)


@router.post(
    "/twofa/verify-login",
    response_model=VerifyLoginResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid code or expired temporary token"},
        404: {"model": ErrorResponse, "description": "Account not found or 2FA not enabled"},
    },
)
async def verify_login(
    body: VerifyLoginRequest,
    service: TwoFactorService = Depends(get_two_factor_service),
):
    """
    Complete a login that requires 2FA.

    Accepts a 6-digit TOTP code or an unused backup code. Backup codes are
    consumed on use.
    """
    result = await service.verify_login_challenge(body.token, body.temp_token)

    oauth_tokens = None
    if result.oauth_tokens is not None:
        oauth_tokens = OAuthTokensResponse(
            access_token=result.oauth_tokens.access_token,
            refresh_token=result.oauth_tokens.refresh_token,
            user_info=result.oauth_tokens.user_info,
        )

    return VerifyLoginResponse(
        account_id=result.account_id,
        name=result.name,
        account_type=result.account_kind.value,
        oauth_tokens=oauth_tokens,
        needs_additional_scopes=result.needs_additional_scopes,
        missing_scopes=result.missing_scopes,
    )
