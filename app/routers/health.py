"""
Health check endpoint.

Reports whether the key-value database is reachable; the remote auth
service is not probed.
"""

from datetime import datetime, timezone

import aiosqlite
from fastapi import APIRouter

from app.db import get_db
from app.errors import StorageError
from app.models import HealthResponse

router = APIRouter(prefix="/api", tags=["health"])


async def _database_status() -> str:
    try:
        async with get_db().execute("SELECT 1") as cur:
            await cur.fetchone()
    except (StorageError, aiosqlite.Error):
        return "unavailable"
    return "ok"


@router.get(
    "/health",
    response_model=HealthResponse,
    operation_id="getHealth",
    summary="Health check",
)
async def get_health() -> HealthResponse:
    database = await _database_status()
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        version="0.1.0",
        database=database,
        timestamp=datetime.now(timezone.utc),
    )
