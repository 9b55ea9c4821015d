"""Seed the fixed student, teacher and admin demo accounts.

Against Supabase each account is created as a confirmed auth user and its
``users`` profile row is upserted with the same id. Without Supabase
credentials the accounts land in the local JSON store with hashed
passwords, so ``/login`` works offline.

Usage:
    SUPABASE_URL=... SUPABASE_SERVICE_ROLE_KEY=... \
    python scripts/seed_test_users.py
"""
from __future__ import annotations

import sys

from dotenv import load_dotenv

from research_portal.demo_accounts import DEMO_ACCOUNTS, seed_demo_accounts
from research_portal.services.storage_service import StorageService


def main() -> None:
    load_dotenv()
    storage = StorageService()
    backend = "Supabase" if storage.uses_supabase else "local storage"

    print(f"Seeding {len(DEMO_ACCOUNTS)} demo accounts into {backend}")

    results = seed_demo_accounts(storage)
    failed = [result for result in results if not result["success"]]
    for result in results:
        marker = "ok" if result["success"] else f"[!] {result['error']}"
        print(f"  {result['email']}: {marker}")

    if failed:
        sys.exit(1)

    print("Seed complete.")
    for account in DEMO_ACCOUNTS:
        print(f"  {account['role']:<8} {account['email']} / {account['password']}")


if __name__ == "__main__":
    main()
