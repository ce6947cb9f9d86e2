"""Pydantic models for the OTP verification service."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


# ── Flow & outcome enums ──────────────────────────────────────────────────


class FlowKind(str, Enum):
    """Which higher-level operation a pending verification belongs to."""
    REGISTRATION = "registration"
    RECOVERY = "recovery"


class VerificationDiscriminator(str, Enum):
    """Value sent to the remote verify call to select the code context."""
    SIGNUP = "signup"
    RECOVERY = "recovery"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    EXPIRED_CODE = "expired_code"
    INVALID_CODE = "invalid_code"
    RATE_LIMITED = "rate_limited"
    USER_NOT_FOUND = "user_not_found"
    SESSION_MISSING = "session_missing"
    NETWORK_OR_UNKNOWN = "network_or_unknown"


class NextStep(str, Enum):
    """Where the client should go after an outcome."""
    STAY = "stay"
    VERIFY_CODE = "verify_code"
    HOME = "home"
    RESET_PASSWORD = "reset_password"
    LOGIN = "login"
    REGISTER = "register"


# ── Persisted records ─────────────────────────────────────────────────────


class PendingVerification(BaseModel):
    """The in-flight verification context handed from entry flow to OTP screen."""
    email: str = Field(..., description="Address the code was sent to")
    flow_kind: FlowKind = Field(..., description="Registration or recovery")

    @field_validator("email")
    @classmethod
    def _email_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("email must not be empty")
        return value


class RateLimitRecord(BaseModel):
    """Sliding-window state for one rate-limited action."""
    last_request_at: float = Field(..., description="Epoch seconds of the last accepted request")
    request_count: int = Field(..., ge=0, description="Requests in the current window")
    blocked_until: Optional[float] = Field(None, description="Epoch seconds the lockout ends")


class RateLimitDecision(BaseModel):
    allowed: bool
    wait_seconds: Optional[int] = None


# ── Remote auth service results ───────────────────────────────────────────


class AuthUser(BaseModel):
    id: str
    email: Optional[str] = None
    email_confirmed_at: Optional[datetime] = None


class AuthSession(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    user: AuthUser


class RegistrationResult(BaseModel):
    user_id: Optional[str] = None
    session: Optional[AuthSession] = None


class VerifyResult(BaseModel):
    user_present: bool
    session_present: bool


# ── Controller outcome ────────────────────────────────────────────────────


class VerificationOutcome(BaseModel):
    """Classified result of a verify or resend attempt."""
    kind: OutcomeKind
    flow_kind: FlowKind
    title: str
    message: str
    next_step: NextStep = NextStep.STAY
    wait_seconds: Optional[int] = None
    raw_message: Optional[str] = Field(None, description="Unclassified remote error text")

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS


# ── API request / response schemas ────────────────────────────────────────


class RegisterRequest(BaseModel):
    name: str = Field(..., description="Full name stored in the user profile")
    email: EmailStr
    password: str
    confirm_password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ResetPasswordRequest(BaseModel):
    password: str
    confirm_password: str


class VerifyCodeRequest(BaseModel):
    # Format is checked by the controller so that a malformed code becomes
    # an invalid_code outcome rather than a 422.
    code: str = Field(..., description="Six-digit code from the email")


class FlowStartedResponse(BaseModel):
    message: str
    email: str
    flow_kind: FlowKind
    next_step: NextStep


class PendingVerificationResponse(BaseModel):
    email: str
    flow_kind: FlowKind
    resend_available: bool
    resend_available_in_seconds: int


class OutcomeResponse(BaseModel):
    kind: OutcomeKind
    title: str
    message: str
    next_step: NextStep
    wait_seconds: Optional[int] = None


class UserInfo(BaseModel):
    email: str
    user_id: Optional[str] = None


class AuthResponse(BaseModel):
    message: str
    user: UserInfo


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str = Field(..., description="ok or unavailable")
    timestamp: datetime
