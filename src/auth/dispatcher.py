"""
Account ownership checks for privileged two-factor changes.

Each account kind has an authenticator that knows which credential it needs:
Local accounts re-enter their password, OAuth accounts present an access token that
the identity provider confirms belongs to them.
"""
import logging
from typing import Dict, Optional

from .errors import (
    InvalidCredential,
    MissingCredential,
    OwnershipMismatch,
    UnsupportedAccountKind,
)
from .models import Account, AccountKind, Credential
from .ports import AccountStore, TokenOwnershipVerifier

logger = logging.getLogger(__name__)


class LocalAuthenticator:
    """Password check for Local accounts."""

    def __init__(self, account_store: AccountStore):
        self.account_store = account_store

    async def verify(self, account: Account, credential: Credential) -> None:
        if not credential.password:
            raise MissingCredential("Password is required for local accounts")

        if not await self.account_store.compare_password(account, credential.password):
            logger.info(f"Password check failed for account {account.account_id}")
            raise InvalidCredential()


class OAuthAuthenticator:
    """Access-token ownership check for OAuth accounts."""

    def __init__(self, ownership_verifier: TokenOwnershipVerifier):
        self.ownership_verifier = ownership_verifier

    async def verify(self, account: Account, credential: Credential) -> None:
        if not credential.oauth_access_token:
            raise MissingCredential("OAuth access token is required for OAuth accounts")

        result = await self.ownership_verifier.verify(credential.oauth_access_token, account.account_id)
        if not result.is_valid:
            logger.info(f"OAuth ownership check failed for account {account.account_id}: {result.reason}")
            raise OwnershipMismatch(result.reason)


class AuthenticationDispatcher:
    """
    Routes an ownership check to the authenticator for the account's kind.

    Raises one of MissingCredential, InvalidCredential, OwnershipMismatch or
    UnsupportedAccountKind; returns None when the credential is accepted.
    """

    def __init__(
        self,
        account_store: AccountStore,
        ownership_verifier: TokenOwnershipVerifier,
        authenticators: Optional[Dict[AccountKind, object]] = None,
    ):
        self.authenticators = authenticators or {
            AccountKind.LOCAL: LocalAuthenticator(account_store),
            AccountKind.OAUTH: OAuthAuthenticator(ownership_verifier),
        }

    async def verify(self, account: Account, credential: Credential) -> None:
        authenticator = self.authenticators.get(account.account_kind)
        if authenticator is None:
            raise UnsupportedAccountKind()
        await authenticator.verify(account, credential)
