#!/usr/bin/env python3
"""Generate the Argon2id hash for ADMIN_PASSWORD_HASH.

Usage:
    # Prompt for the password:
    python scripts/hash_admin_password.py

    # Or pass it explicitly:
    ADMIN_PASSWORD=SecurePassword123! python scripts/hash_admin_password.py
    python scripts/hash_admin_password.py --password SecurePassword123!

Environment Variables:
    ADMIN_PASSWORD: Password to hash when --password is not given

Put the printed value in ADMIN_PASSWORD_HASH (quote it in .env files, the
hash contains "$").
"""
from __future__ import annotations

import argparse
import getpass
import os
import sys

from argon2 import PasswordHasher, Type


def validate_password(password: str) -> bool:
    """Check password meets complexity requirements."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(c in "!@#$%^&*()_+-=[]{}|;':\",./<>?" for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


def hash_password(
    password: str,
    *,
    time_cost: int = 3,
    memory_cost: int = 65536,
    parallelism: int = 4,
) -> str:
    hasher = PasswordHasher(
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
        type=Type.ID,
    )
    return hasher.hash(password)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Hash the admin password for the contact desk",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var; prompts when absent)",
    )
    parser.add_argument("--time-cost", type=int, default=3, help="Argon2 iterations")
    parser.add_argument("--memory-cost", type=int, default=65536, help="Argon2 memory in KiB")
    parser.add_argument("--parallelism", type=int, default=4, help="Argon2 lanes")
    parser.add_argument(
        "--allow-weak",
        action="store_true",
        help="Skip the password complexity check",
    )

    args = parser.parse_args(argv)

    password = args.password
    if not password:
        password = getpass.getpass("Admin password: ")
        if password != getpass.getpass("Repeat password: "):
            print("Error: passwords do not match", file=sys.stderr)
            return 1

    if not password:
        print("Error: password must not be empty", file=sys.stderr)
        return 1

    if not args.allow_weak and not validate_password(password):
        print(
            "Error: Password must be at least 12 characters with 3+ character classes\n"
            "       (uppercase, lowercase, digits, special characters)",
            file=sys.stderr,
        )
        return 1

    print(
        hash_password(
            password,
            time_cost=args.time_cost,
            memory_cost=args.memory_cost,
            parallelism=args.parallelism,
        )
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
