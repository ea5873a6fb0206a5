"""
Pytest configuration and shared fixtures for GATEKEEPER tests.

This module provides common test fixtures for:
- In-memory account store (AccountStore port)
- Fake OAuth ownership verifier
- Recording notification sink
- Controllable clock for token store expiry
- A fully wired TwoFactorService
"""
import asyncio
import copy
import time
import pytest
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import bcrypt

# Add project root to Python path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.auth import mfa
from src.auth.mfa import generate_totp_code
from src.auth.config import TwoFactorSettings
from src.auth.models import Account, AccountKind, OwnershipResult
from src.auth.ports import AccountStoreError, ConcurrencyError
from src.auth.service import TwoFactorService
from src.auth.token_store import MemoryTokenStore


LOCAL_PASSWORD = "Abc12345"
GOOGLE_TOKEN = "ya29.valid-google-token"


def wrong_code_for(secret: str) -> str:
    """A 6-digit code that is not valid for the secret anywhere near now."""
    now = time.time()
    valid = {generate_totp_code(secret, for_time=now + delta) for delta in (-60, -30, 0, 30, 60)}
    candidate = 0
    while f"{candidate:06d}" in valid:
        candidate += 1
    return f"{candidate:06d}"


async def enable_two_factor(service, account_id, credential):
    """Run begin + confirm; returns the SetupResult (secret and plaintext backup codes)."""
    result = await service.begin_setup(account_id, credential)
    await service.confirm_setup(account_id, result.setup_token, generate_totp_code(result.secret))
    await service.drain_notifications()
    return result


# ============================================
# Test doubles
# ============================================

class InMemoryAccountStore:
    """
    AccountStore backed by a dict.

    Reads return copies and saves check the version, like a real database row.
    """

    def __init__(self):
        self.accounts: Dict[str, Account] = {}
        self.fail_reads = False
        self.fail_saves = False
        self.save_count = 0
        self.read_delay = 0.0

    def add(self, account: Account) -> Account:
        self.accounts[account.account_id] = copy.deepcopy(account)
        return account

    def stored(self, account_id: str) -> Account:
        return self.accounts[account_id]

    async def find_by_id(self, account_id: str) -> Optional[Account]:
        if self.fail_reads:
            raise AccountStoreError("store offline")
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        account = self.accounts.get(account_id)
        return copy.deepcopy(account) if account else None

    async def save(self, account: Account) -> None:
        if self.fail_saves:
            raise AccountStoreError("store offline")
        stored = self.accounts.get(account.account_id)
        if stored is None:
            raise AccountStoreError(f"Account {account.account_id} does not exist")
        if stored.version != account.version:
            raise ConcurrencyError(f"Account {account.account_id} was modified concurrently")
        account.version += 1
        self.accounts[account.account_id] = copy.deepcopy(account)
        self.save_count += 1

    async def compare_password(self, account: Account, password: str) -> bool:
        if not account.password_hash:
            return False
        return bcrypt.checkpw(password.encode("utf-8"), account.password_hash.encode("utf-8"))


class FakeOwnershipVerifier:
    """Accepts tokens registered for an account; records every call."""

    def __init__(self):
        self.tokens: Dict[str, str] = {}
        self.calls: List[Tuple[str, str]] = []
        self.error: Optional[Exception] = None

    def allow(self, token: str, account_id: str) -> None:
        self.tokens[token] = account_id

    async def verify(self, oauth_access_token: str, account_id: str) -> OwnershipResult:
        self.calls.append((oauth_access_token, account_id))
        if self.error is not None:
            raise self.error
        if self.tokens.get(oauth_access_token) == account_id:
            return OwnershipResult(is_valid=True)
        return OwnershipResult(is_valid=False, reason="Email mismatch")


class RecordingNotificationSink:
    """Records notifications; can be told to fail the first N calls."""

    def __init__(self, failures: int = 0):
        self.sent: List[Tuple[str, str]] = []
        self.attempts = 0
        self.failures = failures

    async def notify_two_factor_enabled(self, email: str, first_name: str) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("smtp unavailable")
        self.sent.append((email, first_name))


class StubQrRenderer:
    def render_data_url(self, provisioning_uri: str) -> str:
        return "data:image/png;base64,c3R1Yg=="


class FakeClock:
    """Manually advanced clock for MemoryTokenStore."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================
# Fixtures
# ============================================

@pytest.fixture(autouse=True)
def fast_backup_code_hashing(monkeypatch):
    """Use the minimum bcrypt cost so tests that hash backup codes stay fast."""
    monkeypatch.setattr(mfa, "BACKUP_CODE_HASH_ROUNDS", 4)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def account_store():
    return InMemoryAccountStore()


@pytest.fixture
def local_account(account_store):
    """Local account with password "Abc12345" and 2FA not configured."""
    return account_store.add(Account(
        account_id="acct-local-1",
        account_kind=AccountKind.LOCAL,
        email="ada@example.com",
        name="Ada Lovelace",
        password_hash=bcrypt.hashpw(LOCAL_PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8"),
    ))


@pytest.fixture
def oauth_account(account_store, ownership_verifier):
    """Google account whose access token is GOOGLE_TOKEN."""
    account = account_store.add(Account(
        account_id="acct-oauth-1",
        account_kind=AccountKind.OAUTH,
        email="grace@example.com",
        name="Grace Hopper",
        first_name="Grace",
    ))
    ownership_verifier.allow(GOOGLE_TOKEN, account.account_id)
    return account


@pytest.fixture
def ownership_verifier():
    return FakeOwnershipVerifier()


@pytest.fixture
def notification_sink():
    return RecordingNotificationSink()


@pytest.fixture
def settings():
    return TwoFactorSettings(notify_retry_delay_seconds=0)


@pytest.fixture
def temp_tokens(settings):
    return MemoryTokenStore("twofa_temp", settings.temp_token_capacity, settings.temp_token_ttl_seconds)


@pytest.fixture
def setup_tokens(settings):
    return MemoryTokenStore("twofa_setup", settings.setup_token_capacity, settings.setup_token_ttl_seconds)


@pytest.fixture
def service(account_store, ownership_verifier, notification_sink, temp_tokens, setup_tokens, settings):
    return TwoFactorService(
        account_store=account_store,
        ownership_verifier=ownership_verifier,
        notification_sink=notification_sink,
        qr_renderer=StubQrRenderer(),
        temp_tokens=temp_tokens,
        setup_tokens=setup_tokens,
        settings=settings,
    )
