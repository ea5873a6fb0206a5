"""
Backup code lifecycle: regeneration and single-use consumption.
"""
import asyncio
import logging
from typing import List, Tuple

from .accounts import load_account, persist_account
from .dispatcher import AuthenticationDispatcher
from .errors import NotEnabled, StorageFailure
from .mfa import BACKUP_CODE_COUNT, find_matching_backup_code, generate_backup_codes, hash_backup_codes
from .models import Account, Credential
from .ports import AccountStore

logger = logging.getLogger(__name__)


async def issue_backup_codes(count: int) -> Tuple[List[str], List[str]]:
    """
    Generate plaintext backup codes and their hashes.

    Hashing is bcrypt work, so it runs off the event loop.

    Returns:
        Tuple of (plaintext_codes, hashed_codes).
    """
    codes = generate_backup_codes(count)
    hashed = await asyncio.to_thread(hash_backup_codes, codes)
    return codes, hashed


class BackupCodeManager:
    def __init__(
        self,
        account_store: AccountStore,
        dispatcher: AuthenticationDispatcher,
        code_count: int = BACKUP_CODE_COUNT,
    ):
        self.account_store = account_store
        self.dispatcher = dispatcher
        self.code_count = code_count

    async def regenerate(self, account_id: str, credential: Credential) -> List[str]:
        """
        Replace all stored backup codes with a fresh batch.

        Returns:
            Plaintext codes. They are not stored and cannot be shown again.

        Raises:
            AccountNotFound, credential errors from the dispatcher, NotEnabled,
            StorageFailure.
        """
        account = await load_account(self.account_store, account_id)
        await self.dispatcher.verify(account, credential)

        if not account.security.two_factor_enabled:
            raise NotEnabled()

        codes, hashed = await issue_backup_codes(self.code_count)
        account.security.two_factor_backup_codes = hashed
        await persist_account(self.account_store, account)

        logger.info(f"Backup codes regenerated for account {account_id}")
        return codes

    async def consume(self, account: Account, candidate_code: str) -> bool:
        """
        Use up a backup code.

        On a match the hash is removed from the account and the account is saved.
        Without a match the account is left untouched.
        """
        hashed_codes = account.security.two_factor_backup_codes or []
        if not hashed_codes:
            return False

        index = await asyncio.to_thread(find_matching_backup_code, candidate_code, hashed_codes)
        if index is None:
            return False

        account.security.two_factor_backup_codes = hashed_codes[:index] + hashed_codes[index + 1:]
        try:
            await persist_account(self.account_store, account, stamp_change=False)
        except StorageFailure:
            account.security.two_factor_backup_codes = hashed_codes
            raise

        remaining = len(account.security.two_factor_backup_codes)
        logger.info(f"Backup code used for account {account.account_id}, {remaining} remaining")
        return True
