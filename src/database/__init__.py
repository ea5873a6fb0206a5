"""
Database connection managers for GATEKEEPER.

This package provides:
- auth_db: SQL account store (PostgreSQL in production) holding 2FA state
"""
