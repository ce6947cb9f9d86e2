#!/usr/bin/env python3
"""
Run the OTP verification API with uvicorn.

Bind address and reload come from app.config (API_HOST, API_PORT,
API_RELOAD), so a .env file applies here too.
"""

import uvicorn

from app import config

if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=config.API_RELOAD,
        log_level=config.LOG_LEVEL.lower(),
    )
