"""
Application configuration from environment variables.

All settings have sensible defaults for local development.
A .env file in the project root is loaded automatically (if present).
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file before reading any env vars
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# ── Environment ───────────────────────────────────────────────────────────

ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "info")

# uvicorn bind address (used by the root main.py)
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))
API_RELOAD: bool = os.getenv("API_RELOAD", "false").lower() == "true"

# ── Paths ─────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# SQLite file backing the key-value store (pending verifications, rate limits)
DB_PATH: str = os.getenv("DB_PATH", str(DATA_DIR / "otp_verification.db"))

# ── Remote auth service (Supabase / GoTrue) ───────────────────────────────

SUPABASE_URL: str = os.getenv("SUPABASE_URL", "http://localhost:54321")
SUPABASE_ANON_KEY: str = os.getenv("SUPABASE_ANON_KEY", "")
AUTH_HTTP_TIMEOUT: float = float(os.getenv("AUTH_HTTP_TIMEOUT", "15"))

# Admin key, only read by scripts/confirm_user.py. Never ship it to clients.
SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

# ── Client-side rate limiting ─────────────────────────────────────────────

# Requests allowed per window before the action is locked out.
RATE_LIMIT_MAX_REQUESTS: int = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "3"))
RATE_LIMIT_WINDOW_SECONDS: float = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
RATE_LIMIT_BLOCK_SECONDS: float = float(os.getenv("RATE_LIMIT_BLOCK_SECONDS", "300"))

# ── Resend cooldown ───────────────────────────────────────────────────────

RESEND_COOLDOWN_SECONDS: int = int(os.getenv("RESEND_COOLDOWN_SECONDS", "30"))

# Used when the remote service itself reports rate limiting.
RESEND_RATE_LIMITED_COOLDOWN_SECONDS: int = int(
    os.getenv("RESEND_RATE_LIMITED_COOLDOWN_SECONDS", "300")
)

# ── Entry flows ───────────────────────────────────────────────────────────

MIN_PASSWORD_LENGTH: int = int(os.getenv("MIN_PASSWORD_LENGTH", "6"))

# Flow scopes untouched for this long lose their screen and auth session.
FLOW_IDLE_SECONDS: float = float(os.getenv("FLOW_IDLE_SECONDS", "1800"))

# ── JWT session cookie ────────────────────────────────────────────────────

JWT_SECRET: str = os.getenv("JWT_SECRET", "dev-secret-change-me-in-production")
JWT_ALGORITHM: str = "HS256"
JWT_EXPIRY_DAYS: int = int(os.getenv("JWT_EXPIRY_DAYS", "7"))

# Cookie carrying the flow scope id between the entry screens and
# the verification screen.
FLOW_COOKIE_NAME: str = os.getenv("FLOW_COOKIE_NAME", "otp_flow")
