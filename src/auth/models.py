"""
Domain types for the two-factor authentication core.

Accounts are owned by the external account store; the core only reads them and
mutates the ``security`` fields. Tokens live in the expiring token stores and can be
serialized to plain dicts for a shared cache.
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union


class AccountKind(str, enum.Enum):
    LOCAL = "local"
    OAUTH = "oauth"


@dataclass
class SecuritySettings:
    two_factor_enabled: bool = False
    two_factor_secret: Optional[str] = None
    two_factor_backup_codes: Optional[List[str]] = None  # bcrypt hashes
    two_factor_updated_at: Optional[datetime] = None


@dataclass
class Account:
    account_id: str
    account_kind: Union[AccountKind, str]  # raw string when the store holds an unknown type
    email: str
    name: str
    first_name: Optional[str] = None
    password_hash: Optional[str] = None
    security: SecuritySettings = field(default_factory=SecuritySettings)
    version: int = 0

    @property
    def display_first_name(self) -> str:
        """First name for greetings, falling back to the first word of the name."""
        if self.first_name:
            return self.first_name
        return self.name.split(" ")[0] if self.name else ""


@dataclass
class Credential:
    """Proof of account ownership presented for privileged 2FA changes."""
    password: Optional[str] = None
    oauth_access_token: Optional[str] = None


@dataclass
class OwnershipResult:
    is_valid: bool
    reason: Optional[str] = None


# ============================================
# Tokens
# ============================================

@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: str
    user_info: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "user_info": self.user_info,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OAuthTokens":
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            user_info=data.get("user_info"),
        )


@dataclass
class TempLoginToken:
    """Binds a completed primary authentication to a pending 2FA challenge."""
    token: str
    account_id: str
    email: str
    account_kind: AccountKind
    expires_at: datetime
    oauth_tokens: Optional[OAuthTokens] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "account_id": self.account_id,
            "email": self.email,
            "account_kind": self.account_kind.value,
            "expires_at": self.expires_at.isoformat(),
            "oauth_tokens": self.oauth_tokens.to_dict() if self.oauth_tokens else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TempLoginToken":
        oauth_tokens = data.get("oauth_tokens")
        return cls(
            token=data["token"],
            account_id=data["account_id"],
            email=data["email"],
            account_kind=AccountKind(data["account_kind"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            oauth_tokens=OAuthTokens.from_dict(oauth_tokens) if oauth_tokens else None,
        )


@dataclass
class SetupToken:
    """Binds a freshly generated, unconfirmed TOTP secret to its confirmation step."""
    token: str
    account_id: str
    secret: str
    account_kind: AccountKind
    expires_at: datetime
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "account_id": self.account_id,
            "secret": self.secret,
            "account_kind": self.account_kind.value,
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SetupToken":
        return cls(
            token=data["token"],
            account_id=data["account_id"],
            secret=data["secret"],
            account_kind=AccountKind(data["account_kind"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


# ============================================
# Operation results
# ============================================

@dataclass
class SetupResult:
    secret: str
    provisioning_uri: str
    backup_codes: List[str]
    setup_token: str
    qr_code_data_url: Optional[str] = None


@dataclass
class TwoFactorStatus:
    enabled: bool
    backup_codes_remaining: int
    last_change: Optional[datetime] = None


@dataclass
class LoginResult:
    account_id: str
    name: str
    account_kind: AccountKind
    oauth_tokens: Optional[OAuthTokens] = None
    needs_additional_scopes: bool = False
    missing_scopes: List[str] = field(default_factory=list)
