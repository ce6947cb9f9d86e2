"""Interfaces for the external collaborators: key-value storage and remote auth."""

from __future__ import annotations

from typing import Any, Protocol

from app.models import (
    AuthSession,
    RegistrationResult,
    VerificationDiscriminator,
    VerifyResult,
)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def keys(self, prefix: str = "") -> list[str]:
        ...


class RemoteAuthService(Protocol):
    """
    Code-issuing auth service.

    Every method raises AuthServiceError with the service's free-text
    message when the call is rejected or the service is unreachable.
    """

    async def initiate_registration(
        self, email: str, password: str, profile: dict[str, Any]
    ) -> RegistrationResult:
        ...

    async def initiate_recovery(self, email: str) -> None:
        ...

    async def verify_code(
        self, email: str, code: str, discriminator: VerificationDiscriminator
    ) -> VerifyResult:
        ...

    async def resend_registration_code(self, email: str) -> None:
        ...

    async def get_active_session(self) -> AuthSession | None:
        ...

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        ...

    async def update_password(self, password: str) -> None:
        ...
