"""
Authentication endpoints – registration / recovery entry flows and the
OTP verification screen.

The entry endpoints store a pending verification under the caller's flow
scope (cookie) and the verification endpoints drive that scope's
VerificationController.  A successful verification issues a JWT session
cookie.
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status

from app.dependencies import (
    CurrentUser,
    FlowId,
    Registry,
    create_session_cookie,
    get_flow_id,
    set_flow_cookie,
)
from app.errors import AuthServiceError, FlowValidationError, PendingVerificationMissing
from app.models import (
    AuthResponse,
    FlowKind,
    FlowStartedResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    NextStep,
    OutcomeKind,
    OutcomeResponse,
    PendingVerificationResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserInfo,
    VerificationOutcome,
    VerifyCodeRequest,
)
from app.rate_limit import format_wait_time
from app.services import entry_flows
from app.services.error_classifier import registration_classifier
from app.services.registry import FlowRegistry
from app.services.verification import VerificationController

router = APIRouter(prefix="/api/auth", tags=["auth"])

_OUTCOME_STATUS: dict[OutcomeKind, int] = {
    OutcomeKind.SUCCESS: status.HTTP_200_OK,
    OutcomeKind.EXPIRED_CODE: status.HTTP_400_BAD_REQUEST,
    OutcomeKind.INVALID_CODE: status.HTTP_400_BAD_REQUEST,
    OutcomeKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    OutcomeKind.USER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    OutcomeKind.SESSION_MISSING: status.HTTP_401_UNAUTHORIZED,
    OutcomeKind.NETWORK_OR_UNKNOWN: status.HTTP_502_BAD_GATEWAY,
}


# ── Helpers ────────────────────────────────────────────────────────────────


def _outcome_response(outcome: VerificationOutcome) -> OutcomeResponse:
    """Return the outcome body, or raise it as an HTTP error."""
    body = OutcomeResponse(
        kind=outcome.kind,
        title=outcome.title,
        message=outcome.message,
        next_step=outcome.next_step,
        wait_seconds=outcome.wait_seconds,
    )
    if outcome.ok:
        return body
    headers = None
    if outcome.wait_seconds:
        headers = {"Retry-After": str(outcome.wait_seconds)}
    raise HTTPException(
        status_code=_OUTCOME_STATUS[outcome.kind],
        detail=body.model_dump(mode="json"),
        headers=headers,
    )


def _restart_flow(exc: PendingVerificationMissing) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"message": exc.message, "redirect_to": exc.redirect_to},
    )


def _bad_request(exc: FlowValidationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)


def _remote_failure(exc: AuthServiceError, title: str) -> HTTPException:
    if registration_classifier.classify(exc.message) is OutcomeKind.RATE_LIMITED:
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many attempts. Please wait a few minutes before trying again.",
        )
    code = exc.status_code if exc.status_code and 400 <= exc.status_code < 500 else 502
    return HTTPException(status_code=code, detail=f"{title}: {exc.message}")


async def _controller(registry: FlowRegistry, flow_id: str) -> VerificationController:
    try:
        return await registry.controller_for(flow_id)
    except PendingVerificationMissing as exc:
        raise _restart_flow(exc) from None


async def _begin_scope(registry: FlowRegistry, flow_id: str | None, response: Response) -> str:
    """Reuse the caller's scope (starting it over) or mint a new one."""
    if flow_id:
        await registry.reset_flow(flow_id)
    else:
        flow_id = registry.new_flow_id()
    set_flow_cookie(response, flow_id)
    return flow_id


# ── Entry flows ────────────────────────────────────────────────────────────


@router.post(
    "/register",
    response_model=FlowStartedResponse,
    operation_id="register",
    summary="Create an account and send a signup code",
)
async def register(
    body: RegisterRequest,
    response: Response,
    registry: Registry,
    current_flow: str | None = Depends(get_flow_id),
) -> FlowStartedResponse:
    flow_id = await _begin_scope(registry, current_flow, response)
    auth = registry.auth_for(flow_id)
    try:
        next_step = await entry_flows.register(
            auth,
            registry.pending_store(flow_id),
            name=body.name,
            email=body.email,
            password=body.password,
            confirm_password=body.confirm_password,
        )
        session = None
        if next_step is NextStep.HOME:
            session = await auth.get_active_session()
    except FlowValidationError as exc:
        raise _bad_request(exc) from None
    except AuthServiceError as exc:
        raise _remote_failure(exc, "Registration Error") from None

    if next_step is NextStep.HOME:
        create_session_cookie(response, body.email, session.user.id if session else None)
        message = "Your account is ready."
    else:
        message = f"We've sent a 6-digit code to {body.email}"

    return FlowStartedResponse(
        message=message,
        email=body.email,
        flow_kind=FlowKind.REGISTRATION,
        next_step=next_step,
    )


@router.post(
    "/forgot-password",
    response_model=FlowStartedResponse,
    operation_id="forgotPassword",
    summary="Send a password recovery code",
)
async def forgot_password(
    body: ForgotPasswordRequest,
    response: Response,
    registry: Registry,
    current_flow: str | None = Depends(get_flow_id),
) -> FlowStartedResponse:
    flow_id = await _begin_scope(registry, current_flow, response)
    try:
        next_step = await entry_flows.forgot_password(
            registry.auth_for(flow_id),
            registry.pending_store(flow_id),
            email=body.email,
        )
    except FlowValidationError as exc:
        raise _bad_request(exc) from None
    except AuthServiceError as exc:
        raise _remote_failure(exc, "Reset Error") from None

    return FlowStartedResponse(
        message=f"We've sent a 6-digit code to {body.email}",
        email=body.email,
        flow_kind=FlowKind.RECOVERY,
        next_step=next_step,
    )


# ── Verification screen ────────────────────────────────────────────────────


@router.get(
    "/verification",
    response_model=PendingVerificationResponse,
    operation_id="getVerification",
    summary="Load the pending verification for this flow",
)
async def get_verification(flow_id: FlowId, registry: Registry) -> PendingVerificationResponse:
    controller = await _controller(registry, flow_id)
    pending = controller.pending
    return PendingVerificationResponse(
        email=pending.email,
        flow_kind=pending.flow_kind,
        resend_available=controller.timer.available,
        resend_available_in_seconds=controller.timer.remaining,
    )


@router.post(
    "/verification/verify",
    response_model=OutcomeResponse,
    operation_id="verifyCode",
    summary="Verify the code for this flow",
)
async def verify_code(
    body: VerifyCodeRequest,
    response: Response,
    flow_id: FlowId,
    registry: Registry,
) -> OutcomeResponse:
    controller = await _controller(registry, flow_id)
    pending_email = controller.pending.email if controller.pending else ""
    outcome = await controller.verify(body.code)
    if outcome is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Verification already in progress",
        )

    if outcome.ok:
        session = controller.session
        create_session_cookie(
            response,
            (session and session.user.email) or pending_email,
            session.user.id if session else None,
        )
        # No-op when the scope was restarted while this verify was in flight
        registry.finish(flow_id, controller)

    return _outcome_response(outcome)


@router.post(
    "/verification/resend",
    response_model=OutcomeResponse,
    operation_id="resendCode",
    summary="Send a new code for this flow",
)
async def resend_code(flow_id: FlowId, registry: Registry) -> OutcomeResponse:
    controller = await _controller(registry, flow_id)
    if not controller.timer.available:
        wait = controller.timer.remaining
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"You can request a new code in {format_wait_time(wait)}.",
            headers={"Retry-After": str(wait)},
        )
    try:
        outcome = await controller.resend()
    except PendingVerificationMissing as exc:
        raise _restart_flow(exc) from None
    if outcome is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A new code is already being sent",
        )
    return _outcome_response(outcome)


@router.delete(
    "/verification",
    response_model=MessageResponse,
    operation_id="abandonVerification",
    summary="Abandon the pending verification for this flow",
)
async def abandon_verification(flow_id: FlowId, registry: Registry) -> MessageResponse:
    await registry.abandon(flow_id)
    return MessageResponse(message="Verification cancelled")


# ── After verification ─────────────────────────────────────────────────────


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    operation_id="resetPassword",
    summary="Set a new password with the session from a recovery code",
)
async def reset_password(
    body: ResetPasswordRequest,
    flow_id: FlowId,
    registry: Registry,
) -> MessageResponse:
    try:
        await entry_flows.reset_password(
            registry.auth_for(flow_id),
            password=body.password,
            confirm_password=body.confirm_password,
        )
    except FlowValidationError as exc:
        raise _bad_request(exc) from None
    except AuthServiceError as exc:
        if exc.status_code == status.HTTP_401_UNAUTHORIZED:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"message": exc.message, "redirect_to": "/login"},
            ) from None
        raise _remote_failure(exc, "Reset Error") from None

    await registry.reset_flow(flow_id)
    return MessageResponse(
        message="Your password has been successfully updated. "
        "You can now sign in with your new password."
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    operation_id="login",
    summary="Sign in with email and password",
)
async def login(
    body: LoginRequest,
    response: Response,
    registry: Registry,
    current_flow: str | None = Depends(get_flow_id),
) -> AuthResponse:
    flow_id = current_flow or registry.new_flow_id()
    try:
        session = await entry_flows.sign_in(
            registry.auth_for(flow_id), email=body.email, password=body.password,
        )
    except FlowValidationError as exc:
        raise _bad_request(exc) from None
    except AuthServiceError as exc:
        raise _remote_failure(exc, "Login Error") from None
    finally:
        # The session is carried by our cookie; no per-scope state needed
        await registry.reset_flow(flow_id)

    create_session_cookie(response, body.email, session.user.id)
    return AuthResponse(
        message="Login successful!",
        user=UserInfo(email=body.email, user_id=session.user.id),
    )


@router.post(
    "/logout",
    response_model=MessageResponse,
    operation_id="logout",
    summary="Clear the session cookie",
)
async def logout(current_user: CurrentUser, response: Response) -> MessageResponse:
    response.delete_cookie("session")
    return MessageResponse(message="Logged out successfully")


@router.get(
    "/me",
    response_model=UserInfo,
    operation_id="getMe",
    summary="Get current authenticated user info",
)
async def get_me(current_user: CurrentUser) -> UserInfo:
    return current_user
