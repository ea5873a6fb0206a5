"""
SQL account store for two-factor authentication.

This module provides connection management and operations for:
- Account lookup (Local and OAuth accounts)
- Persisting two-factor state (secret, enabled flag, hashed backup codes)
- Password verification for Local accounts

Writes use optimistic versioning: a save based on a stale read fails with
ConcurrencyError instead of overwriting a newer change.

The async methods (find_by_id, save, compare_password) implement the AccountStore
port; they run the blocking SQLAlchemy and bcrypt work in a worker thread.
"""
import os
import uuid
import json
import asyncio
import logging
from typing import Optional, List, Any, Union
from datetime import datetime, timezone
from contextlib import contextmanager

import bcrypt
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from ..auth.models import Account, AccountKind, SecuritySettings
from ..auth.ports import AccountStoreError, ConcurrencyError
from ..utils.secrets import get_postgres_password

logger = logging.getLogger(__name__)

_ACCOUNT_COLUMNS = """
    account_id, account_type, email, name, first_name, password_hash,
    two_factor_enabled, two_factor_secret, two_factor_backup_codes,
    two_factor_updated_at, version
"""


def _to_account_kind(value: str) -> Union[AccountKind, str]:
    """Unrecognized kinds are passed through so the dispatcher can reject them."""
    try:
        return AccountKind(value)
    except ValueError:
        logger.warning(f"Unrecognized account type {value!r}")
        return value


def _to_datetime(value: Any) -> Optional[datetime]:
    """Normalize driver timestamp values (datetime or ISO string) to aware UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


class AuthDB:
    """
    Connection manager and AccountStore implementation.

    Example usage:
        auth_db = AuthDB()
        auth_db.init_schema()

        account_id = auth_db.create_account("user@example.com", "User Name",
                                            password_hash=hash_password("..."))

        account = await auth_db.find_by_id(account_id)
        account.security.two_factor_enabled = True
        await auth_db.save(account)
    """

    def __init__(self, connection_string: Optional[str] = None):
        """
        Initialize database connection.

        Args:
            connection_string: SQLAlchemy database URL.
                             Uses environment variables if not provided.
        """
        if connection_string is None:
            host = os.getenv("POSTGRES_HOST", "localhost")
            port = os.getenv("POSTGRES_PORT", "5432")
            db = os.getenv("POSTGRES_DB", "gatekeeper")
            user = os.getenv("POSTGRES_USER", "gatekeeper_user")
            password = get_postgres_password()
            connection_string = f"postgresql://{user}:{password}@{host}:{port}/{db}"

        self.engine = create_engine(
            connection_string,
            poolclass=QueuePool,
            pool_size=10,
            max_overflow=20,
            pool_timeout=30,
            pool_pre_ping=True,  # Test connections before use (detect stale)
            pool_recycle=300,    # Recycle connections every 5 minutes
        )
        self.Session = sessionmaker(bind=self.engine)

    @contextmanager
    def get_session(self):
        """
        Get a database session with automatic cleanup.

        Usage:
            with auth_db.get_session() as session:
                result = session.execute(query)
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ==========================================
    # Accounts
    # ==========================================

    def create_account(
        self,
        email: str,
        name: str,
        account_kind: AccountKind = AccountKind.LOCAL,
        password_hash: Optional[str] = None,
        first_name: Optional[str] = None,
    ) -> str:
        """
        Create an account row (seeding and tests; account management lives elsewhere).

        Returns:
            UUID of created account.

        Raises:
            ValueError: If email already exists.
        """
        account_id = str(uuid.uuid4())
        now = _to_db_timestamp(datetime.now(timezone.utc))

        with self.get_session() as session:
            existing = session.execute(
                text("SELECT account_id FROM accounts WHERE email = :email"),
                {"email": email.lower().strip()}
            ).fetchone()

            if existing:
                raise ValueError(f"Account with email '{email}' already exists")

            session.execute(
                text("""
                    INSERT INTO accounts (
                        account_id, account_type, email, name, first_name, password_hash,
                        two_factor_enabled, version, created_at, updated_at
                    ) VALUES (
                        :account_id, :account_type, :email, :name, :first_name, :password_hash,
                        :two_factor_enabled, 0, :created_at, :updated_at
                    )
                """),
                {
                    "account_id": account_id,
                    "account_type": AccountKind(account_kind).value,
                    "email": email.lower().strip(),
                    "name": name,
                    "first_name": first_name,
                    "password_hash": password_hash,
                    "two_factor_enabled": False,
                    "created_at": now,
                    "updated_at": now,
                }
            )

        logger.info(f"Created {AccountKind(account_kind).value} account {account_id}")
        return account_id

    def get_account(self, account_id: str) -> Optional[Account]:
        """
        Get account by ID.

        Returns:
            Account or None if not found.
        """
        with self.get_session() as session:
            row = session.execute(
                text(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE account_id = :account_id"),
                {"account_id": account_id}
            ).fetchone()

        if not row:
            return None
        return self._row_to_account(row)

    @staticmethod
    def _row_to_account(row) -> Account:
        backup_codes: Optional[List[str]] = json.loads(row[8]) if row[8] else None
        return Account(
            account_id=str(row[0]),
            account_kind=_to_account_kind(row[1]),
            email=row[2],
            name=row[3],
            first_name=row[4],
            password_hash=row[5],
            security=SecuritySettings(
                two_factor_enabled=bool(row[6]),
                two_factor_secret=row[7],
                two_factor_backup_codes=backup_codes,
                two_factor_updated_at=_to_datetime(row[9]),
            ),
            version=row[10],
        )

    def save_account(self, account: Account) -> None:
        """
        Persist the account's two-factor fields.

        Raises:
            ConcurrencyError: If the row changed since the account was read.
            AccountStoreError: If the account no longer exists.
        """
        security = account.security
        codes_json = json.dumps(security.two_factor_backup_codes) if security.two_factor_backup_codes else None

        with self.get_session() as session:
            result = session.execute(
                text("""
                    UPDATE accounts
                    SET two_factor_enabled = :enabled,
                        two_factor_secret = :secret,
                        two_factor_backup_codes = :backup_codes,
                        two_factor_updated_at = :two_factor_updated_at,
                        version = version + 1,
                        updated_at = :now
                    WHERE account_id = :account_id AND version = :version
                """),
                {
                    "account_id": account.account_id,
                    "version": account.version,
                    "enabled": security.two_factor_enabled,
                    "secret": security.two_factor_secret,
                    "backup_codes": codes_json,
                    "two_factor_updated_at": _to_db_timestamp(security.two_factor_updated_at),
                    "now": _to_db_timestamp(datetime.now(timezone.utc)),
                }
            )

            if result.rowcount == 0:
                exists = session.execute(
                    text("SELECT 1 FROM accounts WHERE account_id = :account_id"),
                    {"account_id": account.account_id}
                ).fetchone()
                if exists:
                    raise ConcurrencyError(f"Account {account.account_id} was modified concurrently")
                raise AccountStoreError(f"Account {account.account_id} does not exist")

        account.version += 1
        logger.debug(f"Saved 2FA state for account {account.account_id} (version {account.version})")

    # ==========================================
    # AccountStore port (async)
    # ==========================================

    async def find_by_id(self, account_id: str) -> Optional[Account]:
        try:
            return await asyncio.to_thread(self.get_account, account_id)
        except SQLAlchemyError as e:
            logger.error(f"Database error loading account {account_id}: {e}")
            raise AccountStoreError(str(e)) from e

    async def save(self, account: Account) -> None:
        try:
            await asyncio.to_thread(self.save_account, account)
        except SQLAlchemyError as e:
            logger.error(f"Database error saving account {account.account_id}: {e}")
            raise AccountStoreError(str(e)) from e

    async def compare_password(self, account: Account, password: str) -> bool:
        if not account.password_hash:
            return False
        return await asyncio.to_thread(verify_password, password, account.password_hash)

    # ==========================================
    # Schema Initialization
    # ==========================================

    def init_schema(self) -> None:
        """
        Initialize database schema (create tables if not exist).

        Call this once during application setup.
        """
        with self.get_session() as session:
            session.execute(text("""
                CREATE TABLE IF NOT EXISTS accounts (
                    account_id VARCHAR(36) PRIMARY KEY,
                    account_type VARCHAR(16) NOT NULL,
                    email VARCHAR(255) UNIQUE NOT NULL,
                    name VARCHAR(255) NOT NULL,
                    first_name VARCHAR(255),
                    password_hash VARCHAR(255),
                    two_factor_enabled BOOLEAN NOT NULL DEFAULT FALSE,
                    two_factor_secret VARCHAR(64),
                    two_factor_backup_codes TEXT,
                    two_factor_updated_at TIMESTAMP,
                    version INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """))

            session.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_accounts_email ON accounts(email)
            """))

        logger.info("Database schema initialized")

    def ping(self) -> None:
        """Run a trivial query (health checks)."""
        with self.get_session() as session:
            session.execute(text("SELECT 1"))


# ==========================================
# Password Hashing Utilities
# ==========================================

def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password.

    Returns:
        Bcrypt hash string.
    """
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify a password against its hash.

    Args:
        password: Plain text password to verify.
        password_hash: Stored bcrypt hash.

    Returns:
        True if password matches, False otherwise.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


# Singleton instance
_auth_db_instance: Optional[AuthDB] = None


def get_auth_db() -> AuthDB:
    """
    Get singleton AuthDB instance.

    Returns:
        AuthDB instance.
    """
    global _auth_db_instance
    if _auth_db_instance is None:
        _auth_db_instance = AuthDB(os.getenv("DATABASE_URL") or None)
    return _auth_db_instance
