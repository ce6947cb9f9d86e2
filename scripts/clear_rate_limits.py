#!/usr/bin/env python3
"""
Clear stored rate-limit records.

Usage:
    python scripts/clear_rate_limits.py            # every action
    python scripts/clear_rate_limits.py ACTION     # one action, e.g. otp_resend:<flow id>
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.db import SqliteKeyValueStore, close_db, init_db  # noqa: E402
from app.rate_limit import RateLimitGuard  # noqa: E402


async def run(action: str | None) -> None:
    await init_db()
    try:
        guard = RateLimitGuard(SqliteKeyValueStore())
        if action:
            await guard.clear(action)
            print(f"Cleared rate limit for {action}")
        else:
            keys = await guard.clear_all()
            print(f"Cleared {len(keys)} rate limit record(s)")
    finally:
        await close_db()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run(sys.argv[1] if len(sys.argv) > 1 else None))
