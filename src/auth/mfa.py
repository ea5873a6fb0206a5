"""
Secret material for two-factor authentication.

Implements TOTP (RFC 6238: SHA1, 6 digits, 30-second step) with pyotp, so codes are
compatible with Google Authenticator, Authy and other TOTP apps.

Also provides backup code generation, bcrypt hashing and verification, and QR code
rendering of provisioning URIs.
"""
import base64
import io
import secrets
from datetime import datetime
from typing import List, Optional, Union

import bcrypt
import pyotp
import qrcode

TOTP_DIGITS = 6
TOTP_INTERVAL = 30
BACKUP_CODE_COUNT = 10
BACKUP_CODE_BYTES = 4
BACKUP_CODE_HASH_ROUNDS = 10

TimeLike = Union[datetime, int, float]


def generate_totp_secret() -> str:
    """
    Generate a new TOTP secret for 2FA enrollment.

    Returns:
        Base32-encoded secret (32 characters, 160 bits).
    """
    return pyotp.random_base32()


def _totp(secret: str) -> pyotp.TOTP:
    return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL)


def generate_totp_code(secret: str, for_time: Optional[TimeLike] = None) -> str:
    """
    Get the TOTP code for a secret at a point in time.

    Args:
        secret: Base32-encoded TOTP secret.
        for_time: datetime or unix timestamp (default: now).

    Returns:
        6-digit code.
    """
    totp = _totp(secret)
    if for_time is None:
        return totp.now()
    return totp.at(for_time)


def verify_totp(
    secret: str,
    code: str,
    window: int = 1,
    for_time: Optional[TimeLike] = None,
) -> bool:
    """
    Verify a TOTP code against the secret.

    Args:
        secret: Base32-encoded TOTP secret.
        code: 6-digit code entered by user.
        window: Number of 30-second steps to allow either side (default 1 = +-30s).
        for_time: Time to verify at (default: now).

    Returns:
        True if code is valid, False otherwise.
    """
    if not secret or not code:
        return False

    code = code.replace(" ", "")
    if len(code) != TOTP_DIGITS or not code.isdigit():
        return False

    try:
        return _totp(secret).verify(code, for_time=for_time, valid_window=window)
    except (TypeError, ValueError):
        # Malformed base32 secret
        return False


def get_totp_provisioning_uri(secret: str, email: str, issuer: str) -> str:
    """
    Generate a provisioning URI for TOTP apps.

    Args:
        secret: Base32-encoded TOTP secret.
        email: Account label (displayed in authenticator app).
        issuer: Application name (displayed in authenticator app).

    Returns:
        otpauth:// URI string.
    """
    return _totp(secret).provisioning_uri(name=email, issuer_name=issuer)


# ============================================
# Backup codes
# ============================================

def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> List[str]:
    """
    Generate single-use backup codes.

    Each code is 4 random bytes rendered as 8 lowercase hex characters. Codes within
    one batch are distinct.

    Args:
        count: Number of backup codes to generate.

    Returns:
        List of plaintext codes.
    """
    codes: List[str] = []
    while len(codes) < count:
        code = secrets.token_hex(BACKUP_CODE_BYTES)
        if code not in codes:
            codes.append(code)
    return codes


def normalize_backup_code(code: str) -> str:
    """Strip separators and case so "A1B2-C3D4" matches "a1b2c3d4"."""
    return code.replace("-", "").replace(" ", "").strip().lower()


def hash_backup_code(code: str) -> str:
    """
    Hash a backup code for storage.

    Args:
        code: Plaintext backup code.

    Returns:
        Bcrypt hash of the normalized code.
    """
    salt = bcrypt.gensalt(rounds=BACKUP_CODE_HASH_ROUNDS)
    return bcrypt.hashpw(normalize_backup_code(code).encode("utf-8"), salt).decode("utf-8")


def hash_backup_codes(codes: List[str]) -> List[str]:
    return [hash_backup_code(code) for code in codes]


def verify_backup_code(code: str, hashed_code: str) -> bool:
    """
    Verify a backup code against its hash.

    Returns False for malformed hashes instead of raising.
    """
    try:
        return bcrypt.checkpw(
            normalize_backup_code(code).encode("utf-8"),
            hashed_code.encode("utf-8"),
        )
    except ValueError:
        return False


def find_matching_backup_code(code: str, hashed_codes: List[str]) -> Optional[int]:
    """
    Find the index of a matching backup code.

    Every stored hash is checked, so the time taken depends only on the list length
    and not on the position of the match.

    Returns:
        Index of the first matching hash, or None if not found.
    """
    matches = [verify_backup_code(code, hashed) for hashed in hashed_codes]
    for index, matched in enumerate(matches):
        if matched:
            return index
    return None


# ============================================
# QR codes
# ============================================

def generate_qr_code(uri: str) -> bytes:
    """
    Generate a QR code image for the provisioning URI.

    Returns:
        PNG image bytes.
    """
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def generate_qr_code_base64(uri: str) -> str:
    """
    Generate a base64-encoded QR code for embedding in HTML.

    Returns:
        Data URL string (data:image/png;base64,...).
    """
    b64 = base64.b64encode(generate_qr_code(uri)).decode("utf-8")
    return f"data:image/png;base64,{b64}"


class QrCodeRenderer:
    """Default QR renderer backed by the qrcode library."""

    def render_data_url(self, provisioning_uri: str) -> str:
        return generate_qr_code_base64(provisioning_uri)
