"""
Entry flows that lead into (and out of) OTP verification.

Registration and password recovery each end by storing a pending
verification that the OTP screen picks up.  Password reset and password
sign-in are the screens the verification outcomes route to.
"""

from __future__ import annotations

import logging

from app import config
from app.errors import AuthServiceError, FlowValidationError
from app.models import AuthSession, FlowKind, NextStep, PendingVerification
from app.services.interfaces import RemoteAuthService
from app.services.pending import PendingVerificationStore
from app.services.supabase.client import profile_for

logger = logging.getLogger(__name__)


def validate_new_password(
    password: str,
    confirm_password: str,
    min_length: int = config.MIN_PASSWORD_LENGTH,
) -> None:
    if not password or not confirm_password:
        raise FlowValidationError("Please fill in all fields")
    if password != confirm_password:
        raise FlowValidationError("Passwords do not match")
    if len(password) < min_length:
        raise FlowValidationError(
            f"Password must be at least {min_length} characters long"
        )


async def register(
    auth: RemoteAuthService,
    pending_store: PendingVerificationStore,
    *,
    name: str,
    email: str,
    password: str,
    confirm_password: str,
) -> NextStep:
    """
    Create the account and hand over to code entry.

    If the service signs the user in straight away (email confirmation
    disabled) there is nothing to verify and the user goes home.
    """
    if not name.strip() or not email.strip():
        raise FlowValidationError("Please fill in all fields")
    validate_new_password(password, confirm_password)

    result = await auth.initiate_registration(email, password, profile_for(name.strip()))
    if result.session is not None:
        logger.info("Registration for %s signed in without confirmation", email)
        return NextStep.HOME

    await pending_store.put(PendingVerification(email=email, flow_kind=FlowKind.REGISTRATION))
    logger.info("Registration started for %s (user %s)", email, result.user_id)
    return NextStep.VERIFY_CODE


async def forgot_password(
    auth: RemoteAuthService,
    pending_store: PendingVerificationStore,
    *,
    email: str,
) -> NextStep:
    if not email.strip():
        raise FlowValidationError("Please enter your email address")
    await auth.initiate_recovery(email)
    await pending_store.put(PendingVerification(email=email, flow_kind=FlowKind.RECOVERY))
    logger.info("Password recovery started for %s", email)
    return NextStep.VERIFY_CODE


async def reset_password(
    auth: RemoteAuthService,
    *,
    password: str,
    confirm_password: str,
) -> NextStep:
    """Set a new password using the session a recovery verification produced."""
    validate_new_password(password, confirm_password)
    session = await auth.get_active_session()
    if session is None:
        raise AuthServiceError("No active session found. Please try logging in.", status_code=401)
    await auth.update_password(password)
    logger.info("Password updated for user %s", session.user.id)
    return NextStep.LOGIN


async def sign_in(auth: RemoteAuthService, *, email: str, password: str) -> AuthSession:
    if not email.strip() or not password:
        raise FlowValidationError("Please fill in all fields")
    return await auth.sign_in_with_password(email, password)
