import logging
from datetime import UTC, datetime, timedelta
from typing import Annotated

import jwt
from fastapi import Cookie, Depends, HTTPException, Request, Response, status

from app.config import (
    ENVIRONMENT,
    FLOW_COOKIE_NAME,
    JWT_ALGORITHM,
    JWT_EXPIRY_DAYS,
    JWT_SECRET,
)
from app.models import UserInfo
from app.services.registry import FlowRegistry

logger = logging.getLogger(__name__)


# ── Registry ───────────────────────────────────────────────────────────────


def get_registry(request: Request) -> FlowRegistry:
    """The registry owned by the running app (set up in its lifespan)."""
    return request.app.state.registry


Registry = Annotated[FlowRegistry, Depends(get_registry)]


# ── Flow scope ─────────────────────────────────────────────────────────────


def get_flow_id(request: Request) -> str | None:
    return request.cookies.get(FLOW_COOKIE_NAME)


def require_flow_id(flow_id: Annotated[str | None, Depends(get_flow_id)]) -> str:
    if not flow_id:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": "No verification data found. Please try again.",
                "redirect_to": "/login",
            },
        )
    return flow_id


FlowId = Annotated[str, Depends(require_flow_id)]


def set_flow_cookie(response: Response, flow_id: str) -> None:
    response.set_cookie(
        key=FLOW_COOKIE_NAME,
        value=flow_id,
        httponly=True,
        samesite="lax",
        secure=ENVIRONMENT == "production",
    )


# ── JWT / Session ──────────────────────────────────────────────────────────


def create_jwt(email: str, user_id: str | None = None) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": email,
        "uid": user_id,
        "iat": now,
        "exp": now + timedelta(days=JWT_EXPIRY_DAYS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def create_session_cookie(response: Response, email: str, user_id: str | None = None) -> None:
    token = create_jwt(email, user_id)
    response.set_cookie(
        key="session",
        value=token,
        httponly=True,
        samesite="lax",
        secure=ENVIRONMENT == "production",
        max_age=JWT_EXPIRY_DAYS * 86400,
    )


async def get_current_user(
    session: Annotated[str | None, Cookie()] = None,
) -> UserInfo:
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Please log in.",
        )

    try:
        payload = jwt.decode(session, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired. Please log in again.",
        ) from None
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session. Please log in again.",
        ) from None

    email: str | None = payload.get("sub")
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload.",
        )

    return UserInfo(email=email, user_id=payload.get("uid"))


CurrentUser = Annotated[UserInfo, Depends(get_current_user)]
