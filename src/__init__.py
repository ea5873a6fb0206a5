"""
GATEKEEPER - Two-Factor Authentication Core

This package provides the two-factor authentication layer for Local (password) and
OAuth accounts: TOTP enrollment, backup codes, login challenges, and the account
store, provider and HTTP adapters around them.
"""

__version__ = "0.1.0"
__author__ = "GATEKEEPER Team"
