"""
Google access-token ownership check.

Confirms that an OAuth access token was issued to the same Google identity as the
account, by asking the userinfo endpoint for the token's email and comparing it with
the account's email.
"""
import logging
import os
from typing import Optional

import httpx

from .accounts import find_account
from .errors import ProviderFailure
from .models import OwnershipResult
from .ports import AccountStore

logger = logging.getLogger(__name__)

DEFAULT_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


class GoogleTokenOwnershipVerifier:
    def __init__(
        self,
        account_store: AccountStore,
        userinfo_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.account_store = account_store
        self.userinfo_url = userinfo_url or os.getenv("GOOGLE_USERINFO_URL", DEFAULT_USERINFO_URL)
        self.timeout = timeout or float(os.getenv("GOOGLE_TIMEOUT", "10"))
        self._transport = transport

    async def verify(self, oauth_access_token: str, account_id: str) -> OwnershipResult:
        """
        Check that the access token belongs to the account.

        Raises:
            ProviderFailure: If Google cannot be reached, answers with a server error
                or returns a body that is not JSON.
        """
        account = await find_account(self.account_store, account_id)
        if account is None:
            return OwnershipResult(is_valid=False, reason="Account not found")

        if not account.email:
            return OwnershipResult(is_valid=False, reason="Account missing email")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(
                    self.userinfo_url,
                    headers={"Authorization": f"Bearer {oauth_access_token}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"Google userinfo request failed: {e}")
            raise ProviderFailure(f"Google userinfo request failed: {e}") from e

        if response.status_code >= 500:
            logger.error(f"Google userinfo error: {response.status_code}")
            raise ProviderFailure(f"Google userinfo error: {response.status_code}")

        if response.status_code != 200:
            return OwnershipResult(is_valid=False, reason="Token rejected by provider")

        try:
            payload = response.json()
        except ValueError as e:
            logger.error(f"Google userinfo returned a non-JSON body: {e}")
            raise ProviderFailure("Google userinfo returned an unreadable response") from e

        token_email = payload.get("email") if isinstance(payload, dict) else None
        if not token_email:
            return OwnershipResult(is_valid=False, reason="Could not get email from token")

        if token_email.lower() != account.email.lower():
            return OwnershipResult(is_valid=False, reason="Email mismatch")

        return OwnershipResult(is_valid=True)
