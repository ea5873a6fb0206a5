"""
Collaborator ports consumed by the two-factor core.

Concrete adapters live elsewhere (``src.database.auth_db``, ``src.auth.google``,
``src.auth.notifications``, ``src.auth.mfa``); the state machines only see these
protocols.
"""
from typing import Optional, Protocol

from .models import Account, OwnershipResult


class AccountStoreError(Exception):
    """Raised by an account store when a read or write fails."""


class ConcurrencyError(AccountStoreError):
    """Raised when a save loses an optimistic-concurrency race."""


class AccountStore(Protocol):
    async def find_by_id(self, account_id: str) -> Optional[Account]:
        """Return the account, or None if it does not exist."""

    async def save(self, account: Account) -> None:
        """Persist the account. Raises AccountStoreError on failure."""

    async def compare_password(self, account: Account, password: str) -> bool:
        """True if the password matches a Local account's stored hash."""


class TokenOwnershipVerifier(Protocol):
    async def verify(self, oauth_access_token: str, account_id: str) -> OwnershipResult:
        """Check that the access token was issued to the account's identity."""


class NotificationSink(Protocol):
    async def notify_two_factor_enabled(self, email: str, first_name: str) -> None:
        """Tell the account holder that 2FA was switched on."""


class QrRenderer(Protocol):
    def render_data_url(self, provisioning_uri: str) -> str:
        """Render the provisioning URI as an image data URL."""
