"""
Two-factor setup state machine.

    NotConfigured --begin--> PendingVerification --confirm--> Enabled
    Enabled --disable--> NotConfigured

A pending setup that is never confirmed simply expires with its setup token. Calling
``begin`` again from any state starts over: the new secret replaces the pending one on
the account, and setup tokens carrying an older secret can no longer be confirmed.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone

from .accounts import load_account, persist_account
from .backup_codes import issue_backup_codes
from .dispatcher import AuthenticationDispatcher
from .errors import InvalidCode, InvalidOrExpiredToken, StorageFailure, TokenAccountMismatch
from .mfa import BACKUP_CODE_COUNT, generate_totp_secret, get_totp_provisioning_uri, verify_totp
from .models import Account, Credential, SetupResult, SetupToken, TwoFactorStatus
from .ports import AccountStore
from .token_store import ExpiringTokenStore, TokenLocks

logger = logging.getLogger(__name__)


class TwoFactorSetupMachine:
    """
    Drives enable / verify-setup / disable transitions for an account.

    Example usage:
        machine = TwoFactorSetupMachine(store, dispatcher, setup_tokens, issuer="GATEKEEPER")

        result = await machine.begin(account_id, Credential(password="..."))
        # user scans result.provisioning_uri, then:
        await machine.confirm(account_id, result.setup_token, "123456")
    """

    def __init__(
        self,
        account_store: AccountStore,
        dispatcher: AuthenticationDispatcher,
        setup_tokens: ExpiringTokenStore[SetupToken],
        issuer: str,
        backup_code_count: int = BACKUP_CODE_COUNT,
        totp_window: int = 1,
    ):
        self.account_store = account_store
        self.dispatcher = dispatcher
        self.setup_tokens = setup_tokens
        self.issuer = issuer
        self.backup_code_count = backup_code_count
        self.totp_window = totp_window
        self._token_locks = TokenLocks()

    async def begin(self, account_id: str, credential: Credential) -> SetupResult:
        """
        Start 2FA setup.

        Generates a TOTP secret and backup codes, stores them on the account with 2FA
        still disabled, and issues a setup token bound to the secret.

        Returns:
            SetupResult with the plaintext secret and backup codes. Neither can be
            recovered later.
        """
        account = await load_account(self.account_store, account_id)
        await self.dispatcher.verify(account, credential)

        secret = generate_totp_secret()
        backup_codes, hashed_codes = await issue_backup_codes(self.backup_code_count)

        account.security.two_factor_secret = secret
        account.security.two_factor_backup_codes = hashed_codes
        account.security.two_factor_enabled = False  # Stays off until confirmed
        await persist_account(self.account_store, account)

        setup_token = self._issue_setup_token(account, secret)

        label = account.email or account.account_id
        provisioning_uri = get_totp_provisioning_uri(secret, label, self.issuer)

        logger.info(f"2FA setup initiated for account {account_id}")

        return SetupResult(
            secret=secret,
            provisioning_uri=provisioning_uri,
            backup_codes=backup_codes,
            setup_token=setup_token.token,
        )

    def _issue_setup_token(self, account: Account, secret: str) -> SetupToken:
        now = datetime.now(timezone.utc)
        setup_token = SetupToken(
            token=secrets.token_hex(32),
            account_id=account.account_id,
            secret=secret,
            account_kind=account.account_kind,
            expires_at=now + timedelta(seconds=self.setup_tokens.ttl_seconds),
            created_at=now,
        )
        self.setup_tokens.put(setup_token.token, setup_token)
        return setup_token

    def _restore(self, setup_token: SetupToken) -> None:
        """Put a taken token back for the rest of its lifetime so the user can retry."""
        remaining = (setup_token.expires_at - datetime.now(timezone.utc)).total_seconds()
        if remaining > 0:
            self.setup_tokens.put(setup_token.token, setup_token, ttl_seconds=remaining)

    async def confirm(self, account_id: str, setup_token: str, code: str) -> Account:
        """
        Verify the first TOTP code and enable 2FA.

        The setup token is single use. A wrong code leaves it valid for a retry;
        attempts on the same token are checked one at a time.

        Returns:
            The updated account.

        Raises:
            InvalidOrExpiredToken, TokenAccountMismatch, AccountNotFound, InvalidCode,
            StorageFailure.
        """
        async with self._token_locks.hold(setup_token):
            return await self._confirm(account_id, setup_token, code)

    async def _confirm(self, account_id: str, setup_token: str, code: str) -> Account:
        token_data = self.setup_tokens.take(setup_token)
        if token_data is None:
            raise InvalidOrExpiredToken()

        if token_data.account_id != account_id:
            # Not this caller's token; leave it for its owner.
            self._restore(token_data)
            raise TokenAccountMismatch()

        try:
            account = await load_account(self.account_store, account_id)
        except StorageFailure:
            self._restore(token_data)
            raise

        # Superseded by a later begin, or 2FA was disabled in between.
        if account.security.two_factor_secret != token_data.secret:
            logger.info(f"Stale setup token presented for account {account_id}")
            raise InvalidOrExpiredToken()

        if not verify_totp(token_data.secret, code, window=self.totp_window):
            self._restore(token_data)
            raise InvalidCode()

        account.security.two_factor_secret = token_data.secret
        account.security.two_factor_enabled = True
        try:
            await persist_account(self.account_store, account)
        except StorageFailure:
            self._restore(token_data)
            raise

        logger.info(f"2FA enabled successfully for account {account_id}")
        return account

    async def disable(self, account_id: str, credential: Credential) -> None:
        """Turn 2FA off and discard the secret and backup codes."""
        account = await load_account(self.account_store, account_id)
        await self.dispatcher.verify(account, credential)

        account.security.two_factor_enabled = False
        account.security.two_factor_secret = None
        account.security.two_factor_backup_codes = None
        await persist_account(self.account_store, account)

        logger.info(f"2FA disabled for account {account_id}")

    async def status(self, account_id: str) -> TwoFactorStatus:
        account = await load_account(self.account_store, account_id)

        return TwoFactorStatus(
            enabled=account.security.two_factor_enabled,
            backup_codes_remaining=len(account.security.two_factor_backup_codes or []),
            last_change=account.security.two_factor_updated_at,
        )
