"""
Two-factor login challenge.

    PasswordVerified --issue_challenge--> ChallengeIssued --verify--> Completed
                                                     \\--> Expired / Failed

The primary authentication step (password check or OAuth callback) calls
``issue_challenge`` when the account has 2FA enabled and relays the returned temporary
token to the client. The client then submits a TOTP or backup code with that token;
on success the caller receives what it needs to create the session.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from .accounts import find_account
from .backup_codes import BackupCodeManager
from .errors import (
    AccountNotFoundOr2FADisabled,
    EmailMismatch,
    InvalidCode,
    InvalidOrExpiredToken,
    StorageFailure,
)
from .mfa import verify_totp
from .models import AccountKind, LoginResult, OAuthTokens, TempLoginToken
from .ports import AccountStore
from .token_store import ExpiringTokenStore, TokenLocks

logger = logging.getLogger(__name__)

# TOTP codes are 6 digits, backup codes 8 characters
MIN_CODE_LENGTH = 6
MAX_CODE_LENGTH = 8


class TwoFactorLoginMachine:
    def __init__(
        self,
        account_store: AccountStore,
        backup_codes: BackupCodeManager,
        temp_tokens: ExpiringTokenStore[TempLoginToken],
        totp_window: int = 1,
    ):
        self.account_store = account_store
        self.backup_codes = backup_codes
        self.temp_tokens = temp_tokens
        self.totp_window = totp_window
        self._token_locks = TokenLocks()

    def issue_challenge(
        self,
        account_id: str,
        email: str,
        account_kind: AccountKind,
        oauth_tokens: Optional[OAuthTokens] = None,
    ) -> str:
        """
        Record a completed primary authentication that still needs a 2FA code.

        Args:
            account_id: Account that passed the first factor.
            email: Account email at the time of login.
            account_kind: Local or OAuth.
            oauth_tokens: Provider tokens to hand back after the challenge (OAuth only).

        Returns:
            Opaque temporary token (64 hex chars) for the client.
        """
        temp_token = TempLoginToken(
            token=secrets.token_hex(32),
            account_id=account_id,
            email=email,
            account_kind=AccountKind(account_kind),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.temp_tokens.ttl_seconds),
            oauth_tokens=oauth_tokens,
        )
        self.temp_tokens.put(temp_token.token, temp_token)

        logger.info(f"2FA challenge issued for account {account_id}")
        return temp_token.token

    def _restore(self, token_data: TempLoginToken) -> None:
        remaining = (token_data.expires_at - datetime.now(timezone.utc)).total_seconds()
        if remaining > 0:
            self.temp_tokens.put(token_data.token, token_data, ttl_seconds=remaining)

    async def verify(self, code: str, temp_token: str) -> LoginResult:
        """
        Check the 2FA code for a pending login.

        Backup codes are tried first, then TOTP. A wrong code leaves the temporary
        token usable until it expires; a successful check consumes it. Attempts on the
        same token are checked one at a time.

        Raises:
            InvalidOrExpiredToken, InvalidCode, AccountNotFoundOr2FADisabled,
            EmailMismatch, StorageFailure.
        """
        async with self._token_locks.hold(temp_token):
            return await self._verify(code, temp_token)

    async def _verify(self, code: str, temp_token: str) -> LoginResult:
        token_data = self.temp_tokens.take(temp_token)
        if token_data is None:
            raise InvalidOrExpiredToken()

        code = (code or "").strip()
        if not MIN_CODE_LENGTH <= len(code) <= MAX_CODE_LENGTH:
            self._restore(token_data)
            raise InvalidCode()

        try:
            account = await find_account(self.account_store, token_data.account_id)
        except StorageFailure:
            self._restore(token_data)
            raise

        if (
            account is None
            or not account.security.two_factor_enabled
            or not account.security.two_factor_secret
        ):
            raise AccountNotFoundOr2FADisabled()

        # Email changed since the challenge was issued
        if (account.email or "").lower() != (token_data.email or "").lower():
            logger.warning(f"2FA login email mismatch for account {account.account_id}")
            raise EmailMismatch()

        try:
            used_backup_code = await self.backup_codes.consume(account, code)
        except StorageFailure:
            self._restore(token_data)
            raise

        if not used_backup_code and not verify_totp(
            account.security.two_factor_secret, code, window=self.totp_window
        ):
            self._restore(token_data)
            raise InvalidCode()

        logger.info(f"2FA login verified for account {account.account_id}")

        result = LoginResult(
            account_id=account.account_id,
            name=account.name,
            account_kind=token_data.account_kind,
        )
        if token_data.account_kind == AccountKind.OAUTH and token_data.oauth_tokens:
            result.oauth_tokens = token_data.oauth_tokens
            result.needs_additional_scopes = False
            result.missing_scopes = []
        return result
