"""
Supabase Auth (GoTrue) integration configuration.

Endpoint paths are relative to the project URL; the anon key is sent both
as the ``apikey`` header and as the default bearer token.
"""

from __future__ import annotations

from app.config import SUPABASE_ANON_KEY

# ── API endpoints ─────────────────────────────────────────────────────────

AUTH_PREFIX = "/auth/v1"

SIGNUP_PATH = f"{AUTH_PREFIX}/signup"
RECOVER_PATH = f"{AUTH_PREFIX}/recover"
VERIFY_PATH = f"{AUTH_PREFIX}/verify"
RESEND_PATH = f"{AUTH_PREFIX}/resend"
USER_PATH = f"{AUTH_PREFIX}/user"
TOKEN_PATH = f"{AUTH_PREFIX}/token"

# Admin API, service-role key only
ADMIN_USERS_PATH = f"{AUTH_PREFIX}/admin/users"

# Profile metadata key holding the display name (matches the mobile app)
PROFILE_NAME_KEY = "full_name"

# Error payloads use different field names depending on the endpoint/version
ERROR_MESSAGE_FIELDS: tuple[str, ...] = ("msg", "message", "error_description", "error")

# Responses meaning "this access token no longer has a session"
SESSION_GONE_STATUSES: frozenset[int] = frozenset({401, 403})

# ── HTTP defaults ─────────────────────────────────────────────────────────


def default_headers(api_key: str = SUPABASE_ANON_KEY) -> dict[str, str]:
    return {
        "User-Agent": "OtpVerificationService/0.1",
        "Accept": "application/json",
        "Content-Type": "application/json",
        "apikey": api_key,
        "Authorization": f"Bearer {api_key}",
    }
