"""
Shared utilities for GATEKEEPER.

This package provides:
- Secrets management
- Safe masking of secrets for logs
"""
from .secrets import get_secret, get_required_secret, mask_secret

__all__ = ["get_secret", "get_required_secret", "mask_secret"]
