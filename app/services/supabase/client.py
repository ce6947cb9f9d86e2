"""
Async HTTP client for the Supabase Auth (GoTrue) REST API.

Implements the RemoteAuthService protocol.  Like a supabase-js client it
remembers the session returned by verify / password sign-in, so one
instance belongs to one user flow.  The underlying httpx.AsyncClient is
shared across instances and owned by whoever created it.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from app import config
from app.errors import AuthServiceError
from app.models import (
    AuthSession,
    AuthUser,
    RegistrationResult,
    VerificationDiscriminator,
    VerifyResult,
)
from app.services.supabase.config import (
    ADMIN_USERS_PATH,
    ERROR_MESSAGE_FIELDS,
    PROFILE_NAME_KEY,
    RECOVER_PATH,
    RESEND_PATH,
    SESSION_GONE_STATUSES,
    SIGNUP_PATH,
    TOKEN_PATH,
    USER_PATH,
    VERIFY_PATH,
    default_headers,
)

logger = logging.getLogger(__name__)


def build_http_client(
    base_url: str = config.SUPABASE_URL,
    api_key: str = config.SUPABASE_ANON_KEY,
    timeout: float = config.AUTH_HTTP_TIMEOUT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the shared httpx client for the auth service."""
    return httpx.AsyncClient(
        base_url=base_url,
        headers=default_headers(api_key),
        timeout=timeout,
        transport=transport,
    )


def _error_message(resp: httpx.Response) -> str:
    """Pull the human-readable message out of a GoTrue error response."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for field in ERROR_MESSAGE_FIELDS:
            value = body.get(field)
            if isinstance(value, str) and value:
                return value
    return resp.text or f"HTTP {resp.status_code}"


def _parse_session(data: dict[str, Any]) -> AuthSession | None:
    if not data.get("access_token") or not isinstance(data.get("user"), dict):
        return None
    try:
        return AuthSession.model_validate(data)
    except ValidationError:
        logger.warning("Ignoring malformed session payload")
        return None


class SupabaseAuthClient:
    """GoTrue client bound to a single user flow."""

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http
        self._session: AuthSession | None = None

    @property
    def session(self) -> AuthSession | None:
        """The last session obtained, without re-checking it remotely."""
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        access_token: str | None = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
        try:
            resp = await self._http.request(
                method, path, json=json, params=params, headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %r", method, path, exc)
            raise AuthServiceError(str(exc) or exc.__class__.__name__) from exc
        return resp

    async def _call(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        resp = await self._request(method, path, **kwargs)
        if resp.is_error:
            message = _error_message(resp)
            logger.info("%s %s → %d: %s", method, path, resp.status_code, message)
            raise AuthServiceError(message, status_code=resp.status_code)
        if not resp.content:
            return {}
        try:
            body = resp.json()
        except ValueError as exc:
            raise AuthServiceError(
                "Unexpected response from auth service", status_code=resp.status_code
            ) from exc
        return body if isinstance(body, dict) else {}

    # ── /signup ───────────────────────────────────────────────────────

    async def initiate_registration(
        self, email: str, password: str, profile: dict[str, Any]
    ) -> RegistrationResult:
        """
        Create the account; the service emails a signup code.

        When email confirmation is disabled the service answers with a
        session straight away and no code is sent.
        """
        data = await self._call(
            "POST", SIGNUP_PATH,
            json={"email": email, "password": password, "data": profile},
        )
        session = _parse_session(data)
        if session is not None:
            self._session = session
            return RegistrationResult(user_id=session.user.id, session=session)
        user = data.get("user") if isinstance(data.get("user"), dict) else data
        return RegistrationResult(user_id=user.get("id"))

    # ── /recover ──────────────────────────────────────────────────────

    async def initiate_recovery(self, email: str) -> None:
        await self._call("POST", RECOVER_PATH, json={"email": email})

    # ── /verify ───────────────────────────────────────────────────────

    async def verify_code(
        self, email: str, code: str, discriminator: VerificationDiscriminator
    ) -> VerifyResult:
        data = await self._call(
            "POST", VERIFY_PATH,
            json={"type": discriminator.value, "email": email, "token": code},
        )
        session = _parse_session(data)
        if session is not None:
            self._session = session
        return VerifyResult(
            user_present=isinstance(data.get("user"), dict) or bool(data.get("id")),
            session_present=session is not None,
        )

    # ── /resend ───────────────────────────────────────────────────────

    async def resend_registration_code(self, email: str) -> None:
        await self._call(
            "POST", RESEND_PATH,
            json={"type": VerificationDiscriminator.SIGNUP.value, "email": email},
        )

    # ── /user ─────────────────────────────────────────────────────────

    async def get_active_session(self) -> AuthSession | None:
        """
        Confirm the remembered session is still live on the service.

        Returns None when there is no session or the service no longer
        recognises its token; raises AuthServiceError on other failures.
        """
        if self._session is None:
            return None
        resp = await self._request(
            "GET", USER_PATH, access_token=self._session.access_token,
        )
        if resp.status_code in SESSION_GONE_STATUSES:
            logger.info("Session for %s is no longer active", self._session.user.email)
            self._session = None
            return None
        if resp.is_error:
            raise AuthServiceError(_error_message(resp), status_code=resp.status_code)
        try:
            user = AuthUser.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise AuthServiceError("Unexpected user payload from auth service") from exc
        self._session = self._session.model_copy(update={"user": user})
        return self._session

    async def update_password(self, password: str) -> None:
        if self._session is None:
            raise AuthServiceError("Auth session missing!", status_code=401)
        await self._call(
            "PUT", USER_PATH,
            json={"password": password},
            access_token=self._session.access_token,
        )

    # ── /token ────────────────────────────────────────────────────────

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        data = await self._call(
            "POST", TOKEN_PATH,
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = _parse_session(data)
        if session is None:
            raise AuthServiceError("Sign-in returned no session")
        self._session = session
        return session


async def confirm_user_email(http: httpx.AsyncClient, user_id: str) -> AuthUser:
    """
    Mark a user's email as confirmed through the admin API.

    *http* must carry the service-role key (see build_http_client); the
    anon key is rejected.  Raises AuthServiceError on any failure.
    """
    path = f"{ADMIN_USERS_PATH}/{user_id}"
    try:
        resp = await http.put(path, json={"email_confirm": True})
    except httpx.HTTPError as exc:
        raise AuthServiceError(str(exc) or exc.__class__.__name__) from exc
    if resp.is_error:
        raise AuthServiceError(_error_message(resp), status_code=resp.status_code)
    try:
        user = AuthUser.model_validate(resp.json())
    except (ValueError, ValidationError) as exc:
        raise AuthServiceError("Unexpected user payload from auth service") from exc
    logger.info("Confirmed email for user %s", user.id)
    return user


def profile_for(name: str) -> dict[str, Any]:
    return {PROFILE_NAME_KEY: name}
