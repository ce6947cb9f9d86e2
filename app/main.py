"""Main FastAPI application for the OTP verification service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import LOG_LEVEL
from app.db import close_db, init_db
from app.routers import auth, health
from app.services.registry import FlowRegistry, registry

logger = logging.getLogger(__name__)


def create_app(flow_registry: FlowRegistry | None = None) -> FastAPI:
    """
    Build the application.

    The registry (storage, guard, remote auth clients, live controllers)
    is owned by the app; tests hand in one wired to fakes.
    """
    flow_registry = flow_registry or registry

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db()
        app.state.registry = flow_registry
        await flow_registry.start()
        logger.info("Application started")
        try:
            yield
        finally:
            await flow_registry.stop()
            await close_db()
            logger.info("Application stopped")

    app = FastAPI(
        title="OTP Verification API",
        description="Email one-time-code verification for registration and password recovery",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.include_router(health.router)
    app.include_router(auth.router)
    return app


logging.basicConfig(
    level=LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
