#!/usr/bin/env python3
"""
Manually confirm a user stuck waiting for email verification.

Uses SUPABASE_SERVICE_ROLE_KEY (admin privileges): run it locally only.

Usage:
    python scripts/confirm_user.py USER_ID
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app import config  # noqa: E402
from app.errors import AuthServiceError  # noqa: E402
from app.services.supabase.client import build_http_client, confirm_user_email  # noqa: E402


async def run(user_id: str) -> int:
    if not config.SUPABASE_SERVICE_ROLE_KEY:
        print("Error: SUPABASE_SERVICE_ROLE_KEY is not set")
        return 1

    async with build_http_client(api_key=config.SUPABASE_SERVICE_ROLE_KEY) as http:
        try:
            user = await confirm_user_email(http, user_id)
        except AuthServiceError as exc:
            print(f"Error confirming user {user_id}: {exc.message}")
            return 1

    print("✅ User confirmed successfully!")
    print(f"User ID: {user.id}")
    print(f"Email confirmed: {user.email_confirmed_at}")
    print("\nThe user can now sign in without code verification.")
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(2)
    logging.basicConfig(level=logging.INFO)
    sys.exit(asyncio.run(run(sys.argv[1])))
