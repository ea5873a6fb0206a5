"""
Account store access shared by the two-factor state machines.

Store errors are surfaced as StorageFailure and never retried here.
"""
from datetime import datetime, timezone
from typing import Optional

from .errors import AccountNotFound, StorageFailure
from .models import Account
from .ports import AccountStore, AccountStoreError, ConcurrencyError


async def find_account(store: AccountStore, account_id: str) -> Optional[Account]:
    try:
        return await store.find_by_id(account_id)
    except AccountStoreError as e:
        raise StorageFailure(f"Failed to load account: {e}") from e


async def load_account(store: AccountStore, account_id: str) -> Account:
    account = await find_account(store, account_id)
    if account is None:
        raise AccountNotFound()
    return account


async def persist_account(store: AccountStore, account: Account, stamp_change: bool = True) -> None:
    """
    Save the account.

    With stamp_change the 2FA change time is set first; consuming a backup code
    passes False so it does not count as a configuration change.
    """
    previous_stamp = account.security.two_factor_updated_at
    if stamp_change:
        account.security.two_factor_updated_at = datetime.now(timezone.utc)
    try:
        await store.save(account)
    except ConcurrencyError as e:
        account.security.two_factor_updated_at = previous_stamp
        raise StorageFailure("Account was modified concurrently, please retry") from e
    except AccountStoreError as e:
        account.security.two_factor_updated_at = previous_stamp
        raise StorageFailure(f"Failed to save account: {e}") from e
