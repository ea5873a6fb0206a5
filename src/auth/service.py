"""
Two-factor authentication service.

Single entry point for the API layer. Wires the state machines to their
collaborators and exposes the public operations:

- get_status, begin_setup, confirm_setup, disable_2fa
- regenerate_backup_codes
- issue_login_challenge, verify_login_challenge
"""
import asyncio
import logging
from typing import Dict, List, Optional, Set, Tuple

import redis

from .backup_codes import BackupCodeManager
from .config import TwoFactorSettings
from .dispatcher import AuthenticationDispatcher
from .login import TwoFactorLoginMachine
from .models import (
    AccountKind,
    Credential,
    LoginResult,
    OAuthTokens,
    SetupResult,
    SetupToken,
    TempLoginToken,
    TwoFactorStatus,
)
from .notifications import send_non_critical
from .ports import AccountStore, NotificationSink, QrRenderer, TokenOwnershipVerifier
from .setup import TwoFactorSetupMachine
from .token_store import (
    ExpiringTokenStore,
    MemoryTokenStore,
    RedisTokenStore,
    TokenStoreStats,
)

logger = logging.getLogger(__name__)


def create_token_stores(
    settings: TwoFactorSettings,
    redis_client: Optional[redis.Redis] = None,
) -> Tuple[ExpiringTokenStore[TempLoginToken], ExpiringTokenStore[SetupToken]]:
    """
    Build the temp-login and setup token stores.

    Uses Redis when configured and a client is available, in-memory otherwise.

    Returns:
        Tuple of (temp_login_store, setup_store).
    """
    if settings.token_store_backend == "redis" and redis_client is not None:
        temp_store = RedisTokenStore(
            "twofa_temp",
            settings.temp_token_capacity,
            settings.temp_token_ttl_seconds,
            redis_client,
            encode=TempLoginToken.to_dict,
            decode=TempLoginToken.from_dict,
        )
        setup_store = RedisTokenStore(
            "twofa_setup",
            settings.setup_token_capacity,
            settings.setup_token_ttl_seconds,
            redis_client,
            encode=SetupToken.to_dict,
            decode=SetupToken.from_dict,
        )
        logger.info("Two-factor token stores using Redis")
        return temp_store, setup_store

    if settings.token_store_backend == "redis":
        logger.warning("TOKEN_STORE_BACKEND=redis but Redis is unavailable. Using in-memory token stores.")

    return (
        MemoryTokenStore("twofa_temp", settings.temp_token_capacity, settings.temp_token_ttl_seconds),
        MemoryTokenStore("twofa_setup", settings.setup_token_capacity, settings.setup_token_ttl_seconds),
    )


class TwoFactorService:
    """
    Facade over the setup machine, login machine and backup code manager.

    Example usage:
        temp_store, setup_store = create_token_stores(settings)
        service = TwoFactorService(
            account_store=auth_db,
            ownership_verifier=GoogleTokenOwnershipVerifier(auth_db),
            notification_sink=LoggingNotificationSink(),
            qr_renderer=QrCodeRenderer(),
            temp_tokens=temp_store,
            setup_tokens=setup_store,
            settings=settings,
        )
    """

    def __init__(
        self,
        account_store: AccountStore,
        ownership_verifier: TokenOwnershipVerifier,
        notification_sink: NotificationSink,
        qr_renderer: Optional[QrRenderer],
        temp_tokens: ExpiringTokenStore[TempLoginToken],
        setup_tokens: ExpiringTokenStore[SetupToken],
        settings: Optional[TwoFactorSettings] = None,
    ):
        self.settings = settings or TwoFactorSettings()
        self.account_store = account_store
        self.notification_sink = notification_sink
        self.qr_renderer = qr_renderer
        self.temp_tokens = temp_tokens
        self.setup_tokens = setup_tokens

        self.dispatcher = AuthenticationDispatcher(account_store, ownership_verifier)
        self.backup_codes = BackupCodeManager(
            account_store,
            self.dispatcher,
            code_count=self.settings.backup_code_count,
        )
        self.setup_machine = TwoFactorSetupMachine(
            account_store,
            self.dispatcher,
            setup_tokens,
            issuer=self.settings.issuer,
            backup_code_count=self.settings.backup_code_count,
            totp_window=self.settings.totp_window,
        )
        self.login_machine = TwoFactorLoginMachine(
            account_store,
            self.backup_codes,
            temp_tokens,
            totp_window=self.settings.totp_window,
        )

        # Strong references to detached notification tasks
        self._background_tasks: Set[asyncio.Task] = set()

    # ============================================
    # Setup
    # ============================================

    async def get_status(self, account_id: str) -> TwoFactorStatus:
        return await self.setup_machine.status(account_id)

    async def begin_setup(self, account_id: str, credential: Credential) -> SetupResult:
        result = await self.setup_machine.begin(account_id, credential)
        if self.qr_renderer is not None:
            result.qr_code_data_url = self.qr_renderer.render_data_url(result.provisioning_uri)
        return result

    async def confirm_setup(self, account_id: str, setup_token: str, code: str) -> None:
        account = await self.setup_machine.confirm(account_id, setup_token, code)

        if account.email:
            self._notify_detached(
                self.notification_sink.notify_two_factor_enabled,
                (account.email, account.display_first_name),
            )

    async def disable_2fa(self, account_id: str, credential: Credential) -> None:
        await self.setup_machine.disable(account_id, credential)

    async def regenerate_backup_codes(self, account_id: str, credential: Credential) -> List[str]:
        return await self.backup_codes.regenerate(account_id, credential)

    # ============================================
    # Login
    # ============================================

    def issue_login_challenge(
        self,
        account_id: str,
        email: str,
        account_kind: AccountKind,
        oauth_tokens: Optional[OAuthTokens] = None,
    ) -> str:
        return self.login_machine.issue_challenge(account_id, email, account_kind, oauth_tokens)

    async def verify_login_challenge(self, code: str, temp_token: str) -> LoginResult:
        return await self.login_machine.verify(code, temp_token)

    # ============================================
    # Diagnostics & lifecycle
    # ============================================

    def token_store_stats(self) -> Dict[str, TokenStoreStats]:
        return {
            self.temp_tokens.name: self.temp_tokens.stats(),
            self.setup_tokens.name: self.setup_tokens.stats(),
        }

    def _notify_detached(self, func, args) -> None:
        task = asyncio.create_task(
            send_non_critical(
                func,
                args,
                max_attempts=self.settings.notify_max_attempts,
                delay_seconds=self.settings.notify_retry_delay_seconds,
            )
        )
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def drain_notifications(self) -> None:
        """Wait for pending notifications (shutdown and tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
