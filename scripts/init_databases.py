#!/usr/bin/env python3
"""
Initialize GATEKEEPER database schema.

Creates the accounts table used by the two-factor service and optionally seeds an
account for local testing.

Usage:
    python scripts/init_databases.py
    python scripts/init_databases.py --seed-email dev@example.com --seed-password secret123
    python scripts/init_databases.py --seed-email dev@example.com --seed-kind oauth
"""
import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.auth.models import AccountKind
from src.database.auth_db import get_auth_db, hash_password


def main():
    parser = argparse.ArgumentParser(description="Initialize the GATEKEEPER database")
    parser.add_argument("--seed-email", help="Create an account with this email")
    parser.add_argument("--seed-name", default="Dev User", help="Name of the seeded account")
    parser.add_argument("--seed-password", help="Password for a seeded local account")
    parser.add_argument(
        "--seed-kind",
        choices=[kind.value for kind in AccountKind],
        default=AccountKind.LOCAL.value,
        help="Account type of the seeded account",
    )
    args = parser.parse_args()

    print("=" * 60)
    print("GATEKEEPER Database Initialization")
    print("=" * 60)

    db = get_auth_db()

    print("\n[1/2] Schema:")
    db.init_schema()
    print("    Table: accounts")

    print("\n[2/2] Seed account:")
    if not args.seed_email:
        print("    Skipped (no --seed-email)")
    else:
        kind = AccountKind(args.seed_kind)
        if kind == AccountKind.LOCAL and not args.seed_password:
            parser.error("--seed-password is required for local accounts")

        password_hash = hash_password(args.seed_password) if args.seed_password else None
        try:
            account_id = db.create_account(
                email=args.seed_email,
                name=args.seed_name,
                account_kind=kind,
                password_hash=password_hash,
            )
            print(f"    Created {kind.value} account {account_id}")
        except ValueError as e:
            print(f"    {e}")

    print("\n" + "=" * 60)
    print("Database initialization complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
