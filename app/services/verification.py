"""
Verification controller – the OTP screen's state machine.

Drives two independent sub-machines that share one pending verification:

    verify:  IDLE → VERIFYING → VERIFIED_SETTLED | FAILED
    resend:  IDLE → RESENDING → RESEND_SETTLED  | FAILED

The flow kind of the pending verification decides everything flow
specific: which discriminator the remote verify call gets, and which
remote call a resend maps to (registration has a real resend, recovery
re-triggers the whole recovery request).

Duplicate submits (auto-submit on the sixth digit plus a button press)
are dropped by a single-flight flag; they return None instead of an
outcome.  Results that arrive after dispose() are returned but not
published and do not touch the cooldown.
"""

from __future__ import annotations

import logging
from enum import Enum

from app import config
from app.errors import AuthServiceError, PendingVerificationMissing, StorageError
from app.models import (
    AuthSession,
    FlowKind,
    NextStep,
    OutcomeKind,
    PendingVerification,
    VerificationDiscriminator,
    VerificationOutcome,
)
from app.rate_limit import OTP_RESEND, RateLimitGuard, format_wait_time
from app.services.cooldown import ResendCooldownTimer
from app.services.error_classifier import (
    ErrorClassifier,
    resend_classifier,
    verify_classifier,
)
from app.services.events import Observable
from app.services.interfaces import RemoteAuthService
from app.services.otp_format import is_valid_format, mask_code
from app.services.pending import PendingVerificationStore

logger = logging.getLogger(__name__)

# The central invariant: a flow only ever uses its own discriminator.
DISCRIMINATORS: dict[FlowKind, VerificationDiscriminator] = {
    FlowKind.REGISTRATION: VerificationDiscriminator.SIGNUP,
    FlowKind.RECOVERY: VerificationDiscriminator.RECOVERY,
}

SUCCESS_NEXT_STEP: dict[FlowKind, NextStep] = {
    FlowKind.REGISTRATION: NextStep.HOME,
    FlowKind.RECOVERY: NextStep.RESET_PASSWORD,
}


def discriminator_for(flow_kind: FlowKind) -> VerificationDiscriminator:
    return DISCRIMINATORS[flow_kind]


class VerifyState(str, Enum):
    IDLE = "idle"
    VERIFYING = "verifying"
    VERIFIED_SETTLED = "verified_settled"
    FAILED = "failed"


class ResendState(str, Enum):
    IDLE = "idle"
    RESENDING = "resending"
    RESEND_SETTLED = "resend_settled"
    FAILED = "failed"


class VerificationController:
    def __init__(
        self,
        pending_store: PendingVerificationStore,
        auth: RemoteAuthService,
        guard: RateLimitGuard,
        *,
        timer: ResendCooldownTimer | None = None,
        outcomes: Observable[VerificationOutcome] | None = None,
        resend_action: str = OTP_RESEND,
        resend_cooldown_seconds: int = config.RESEND_COOLDOWN_SECONDS,
        rate_limited_cooldown_seconds: int = config.RESEND_RATE_LIMITED_COOLDOWN_SECONDS,
        verify_errors: ErrorClassifier = verify_classifier,
        resend_errors: ErrorClassifier = resend_classifier,
    ) -> None:
        self._pending_store = pending_store
        self._auth = auth
        self._guard = guard
        self._timer = timer or ResendCooldownTimer()
        self._outcomes = outcomes
        self._resend_action = resend_action
        self._resend_cooldown = resend_cooldown_seconds
        self._rate_limited_cooldown = rate_limited_cooldown_seconds
        self._verify_errors = verify_errors
        self._resend_errors = resend_errors

        self._pending: PendingVerification | None = None
        self._flow_kind: FlowKind | None = None
        self._session: AuthSession | None = None
        self._verifying = False
        self._resending = False
        self._disposed = False
        self.verify_state = VerifyState.IDLE
        self.resend_state = ResendState.IDLE

    # ── Introspection ──────────────────────────────────────────────────

    @property
    def pending(self) -> PendingVerification | None:
        return self._pending

    @property
    def flow_kind(self) -> FlowKind | None:
        return self._flow_kind

    @property
    def session(self) -> AuthSession | None:
        """Session confirmed by the last successful verification."""
        return self._session

    @property
    def timer(self) -> ResendCooldownTimer:
        return self._timer

    @property
    def is_verifying(self) -> bool:
        return self._verifying

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def start(self) -> PendingVerification:
        """
        Load the pending verification the entry flow handed over.

        Raises PendingVerificationMissing when there is none (or it can't be
        read): the screen must not initialise, the user restarts the flow.
        """
        try:
            pending = await self._pending_store.get()
        except StorageError:
            logger.exception("Could not load pending verification")
            pending = None
        if pending is None:
            raise PendingVerificationMissing()
        self._pending = pending
        self._flow_kind = pending.flow_kind
        logger.info(
            "Verification screen ready for %s (%s flow)",
            pending.email, pending.flow_kind.value,
        )
        return pending

    def dispose(self) -> None:
        """Screen teardown: stop the countdown and stop publishing results."""
        self._disposed = True
        self._timer.cancel()

    async def abandon(self) -> None:
        """User gave up on this verification: forget the pending record."""
        await self._pending_store.clear()
        self._pending = None
        self.dispose()

    # ── Verify ─────────────────────────────────────────────────────────

    async def verify(self, code: str) -> VerificationOutcome | None:
        if self._verifying:
            logger.info("Verification already in progress – ignoring duplicate submit")
            return None

        if self.verify_state is VerifyState.VERIFIED_SETTLED:
            # The code was consumed; never report a second success.
            outcome = self._outcome(
                OutcomeKind.INVALID_CODE,
                "Invalid Code",
                "This verification code has already been used.",
            )
            self._publish(outcome)
            return outcome

        pending = self._require_pending()

        if not is_valid_format(code):
            return self._settle_verify(self._outcome(
                OutcomeKind.INVALID_CODE,
                "Invalid Format",
                "Please enter a valid 6-digit verification code.",
            ))

        self._verifying = True
        self.verify_state = VerifyState.VERIFYING
        try:
            outcome = await self._verify_remote(pending, code)
        finally:
            self._verifying = False
        return self._settle_verify(outcome)

    async def _verify_remote(
        self, pending: PendingVerification, code: str
    ) -> VerificationOutcome:
        discriminator = discriminator_for(pending.flow_kind)
        logger.info(
            "Starting OTP verification for %s (code=%s, flow=%s, type=%s)",
            pending.email, mask_code(code), pending.flow_kind.value, discriminator.value,
        )

        try:
            result = await self._auth.verify_code(pending.email, code, discriminator)
        except AuthServiceError as exc:
            logger.info("Verification failed: %s", exc.message)
            return self._verify_failure(exc.message)
        except Exception:
            logger.exception("Unexpected verification failure")
            return self._outcome(
                OutcomeKind.NETWORK_OR_UNKNOWN,
                "Verification Error",
                "An unexpected error occurred during verification. Please try again.",
            )

        if not result.user_present and not result.session_present:
            logger.error("Verification returned neither user nor session")
            return self._outcome(
                OutcomeKind.SESSION_MISSING,
                "Verification Error",
                "Verification completed but no user session was created. Please try logging in.",
                next_step=NextStep.LOGIN,
            )

        # Re-confirm the session before declaring success
        try:
            session = await self._auth.get_active_session()
        except AuthServiceError as exc:
            logger.error("Session fetch failed after verification: %s", exc.message)
            return self._outcome(
                OutcomeKind.SESSION_MISSING,
                "Session Error",
                "Failed to retrieve user session. Please try logging in.",
                next_step=NextStep.LOGIN,
            )
        if session is None:
            logger.error("No session found after verification")
            return self._outcome(
                OutcomeKind.SESSION_MISSING,
                "Session Error",
                "No active session found. Please try logging in.",
                next_step=NextStep.LOGIN,
            )

        logger.info("Session confirmed for user %s", session.user.id)
        self._session = session
        await self._release_pending(pending)
        self._pending = None
        self._timer.cancel()

        if pending.flow_kind is FlowKind.REGISTRATION:
            message = "Your account has been verified successfully. Welcome!"
        else:
            message = "Your identity has been verified successfully."
        return self._outcome(
            OutcomeKind.SUCCESS,
            "Verification Successful!",
            message,
            next_step=SUCCESS_NEXT_STEP[pending.flow_kind],
        )

    def _verify_failure(self, raw: str) -> VerificationOutcome:
        kind = self._verify_errors.classify(raw)
        if kind is OutcomeKind.EXPIRED_CODE:
            return self._outcome(
                kind, "Code Expired",
                "Your verification code has expired. Please request a new one.",
            )
        if kind is OutcomeKind.INVALID_CODE:
            return self._outcome(
                kind, "Invalid Code",
                "The verification code you entered is incorrect. Please try again.",
            )
        if kind is OutcomeKind.RATE_LIMITED:
            return self._outcome(
                kind, "Too Many Attempts",
                "You have made too many verification attempts. Please wait before trying again.",
            )
        return self._outcome(kind, "Verification Failed", raw, raw_message=raw)

    def _settle_verify(self, outcome: VerificationOutcome) -> VerificationOutcome:
        self.verify_state = (
            VerifyState.VERIFIED_SETTLED if outcome.ok else VerifyState.FAILED
        )
        self._publish(outcome)
        return outcome

    # ── Resend ─────────────────────────────────────────────────────────

    async def resend(self) -> VerificationOutcome | None:
        if self._resending:
            logger.info("Resend already in progress – ignoring duplicate request")
            return None

        pending = self._require_pending()

        self._resending = True
        self.resend_state = ResendState.RESENDING
        try:
            outcome = await self._resend(pending)
        finally:
            self._resending = False
        self.resend_state = (
            ResendState.RESEND_SETTLED if outcome.ok else ResendState.FAILED
        )
        self._publish(outcome)
        return outcome

    async def _resend(self, pending: PendingVerification) -> VerificationOutcome:
        decision = await self._guard.check(self._resend_action)
        if not decision.allowed:
            wait = decision.wait_seconds or self._rate_limited_cooldown
            self._arm(wait)
            return self._outcome(
                OutcomeKind.RATE_LIMITED,
                "Too Many Requests",
                f"Please wait {format_wait_time(wait)} before requesting another code.",
                wait_seconds=wait,
            )

        logger.info("Resending OTP for %s (%s flow)", pending.email, pending.flow_kind.value)
        try:
            if pending.flow_kind is FlowKind.REGISTRATION:
                await self._auth.resend_registration_code(pending.email)
            else:
                # No resend primitive for recovery: re-run the recovery request
                await self._auth.initiate_recovery(pending.email)
        except AuthServiceError as exc:
            logger.info("Resend failed: %s", exc.message)
            return self._resend_failure(exc.message)
        except Exception:
            logger.exception("Unexpected resend failure")
            return self._outcome(
                OutcomeKind.NETWORK_OR_UNKNOWN,
                "Resend Error",
                "An unexpected error occurred while sending the code. Please try again later.",
            )

        self._arm(self._resend_cooldown)
        return self._outcome(
            OutcomeKind.SUCCESS,
            "Code Sent!",
            f"A new verification code has been sent to {pending.email}. "
            "Please check your inbox and spam folder.",
            wait_seconds=self._resend_cooldown,
        )

    def _resend_failure(self, raw: str) -> VerificationOutcome:
        kind = self._resend_errors.classify(raw)
        if kind is OutcomeKind.RATE_LIMITED:
            self._arm(self._rate_limited_cooldown)
            return self._outcome(
                kind, "Rate Limited",
                "You have requested too many codes. "
                "Please wait a few minutes before requesting another one.",
                wait_seconds=self._rate_limited_cooldown,
            )
        if kind is OutcomeKind.USER_NOT_FOUND:
            return self._outcome(
                kind, "User Not Found",
                "No user found with this email address. "
                "Please check your email or register a new account.",
                next_step=NextStep.REGISTER,
            )
        return self._outcome(
            OutcomeKind.NETWORK_OR_UNKNOWN, "Resend Failed", raw, raw_message=raw,
        )

    # ── Helpers ────────────────────────────────────────────────────────

    async def _release_pending(self, verified: PendingVerification) -> None:
        """
        Clear the slot the verified record came from.

        A screen torn down while the remote call was in flight leaves the
        slot alone: a newer entry flow may have written it since.
        """
        if self._disposed:
            logger.info("Screen disposed during verification – keeping pending slot")
            return
        try:
            stored = await self._pending_store.get()
        except StorageError:
            logger.exception("Could not re-read pending verification – keeping it")
            return
        if stored != verified:
            logger.info("Pending slot was replaced during verification – keeping it")
            return
        await self._pending_store.clear()

    def _require_pending(self) -> PendingVerification:
        if self._pending is None:
            raise PendingVerificationMissing()
        return self._pending

    def _arm(self, seconds: int) -> None:
        if self._disposed:
            return
        self._timer.arm(seconds)

    def _publish(self, outcome: VerificationOutcome) -> None:
        if self._disposed:
            logger.debug("Dropping %s outcome for disposed screen", outcome.kind.value)
            return
        if self._outcomes is not None:
            self._outcomes.publish(outcome)

    def _outcome(
        self,
        kind: OutcomeKind,
        title: str,
        message: str,
        *,
        next_step: NextStep = NextStep.STAY,
        wait_seconds: int | None = None,
        raw_message: str | None = None,
    ) -> VerificationOutcome:
        return VerificationOutcome(
            kind=kind,
            flow_kind=self._flow_kind or FlowKind.REGISTRATION,
            title=title,
            message=message,
            next_step=next_step,
            wait_seconds=wait_seconds,
            raw_message=raw_message,
        )
