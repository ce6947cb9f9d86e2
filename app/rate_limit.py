"""
Client-side rate limiting for OTP actions.

A cooperative guard, not a security boundary: it keeps an honest client
from hammering the code-issuing service.  Each action ("otp_resend", ...)
has its own sliding-window record in the key-value store:

  • up to 3 requests per 60-second window are allowed
  • the 4th request inside a window locks the action out for 5 minutes
  • a request more than 60s after the last one starts a fresh window

Storage problems never block the user – the guard fails open.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable

from pydantic import ValidationError

from app import config
from app.errors import StorageError
from app.models import RateLimitDecision, RateLimitRecord
from app.services.interfaces import KeyValueStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "rate_limit:"

# Action name used by the verification screen's resend button
OTP_RESEND = "otp_resend"


def rate_limit_key(action: str) -> str:
    return f"{KEY_PREFIX}{action}"


def format_wait_time(seconds: int) -> str:
    """Human-readable wait, e.g. ``4m 59s`` or ``42s``."""
    minutes, remaining = divmod(max(0, int(seconds)), 60)
    if minutes > 0:
        return f"{minutes}m {remaining}s"
    return f"{remaining}s"


class RateLimitGuard:
    """Sliding-window request counter with escalating lockout, keyed by action."""

    def __init__(
        self,
        storage: KeyValueStore,
        *,
        max_requests: int = config.RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = config.RATE_LIMIT_WINDOW_SECONDS,
        block_seconds: float = config.RATE_LIMIT_BLOCK_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._max_requests = max_requests
        self._window = window_seconds
        self._block = block_seconds
        self._clock = clock

    async def check(self, action: str) -> RateLimitDecision:
        """
        Count one request for *action* and say whether it may proceed.

        Every call writes the updated record back, including rejected ones.
        """
        try:
            return await self._check(action)
        except (StorageError, ValidationError, ValueError):
            logger.exception("Rate limit check failed for %r – allowing request", action)
            return RateLimitDecision(allowed=True)

    async def _check(self, action: str) -> RateLimitDecision:
        key = rate_limit_key(action)
        now = self._clock()
        raw = await self._storage.get(key)

        if raw is None:
            await self._save(key, RateLimitRecord(last_request_at=now, request_count=1))
            return RateLimitDecision(allowed=True)

        record = RateLimitRecord.model_validate_json(raw)

        if record.blocked_until is not None and now < record.blocked_until:
            wait = math.ceil(record.blocked_until - now)
            logger.info("Action %r blocked for another %ds", action, wait)
            return RateLimitDecision(allowed=False, wait_seconds=wait)

        if now - record.last_request_at > self._window:
            await self._save(key, RateLimitRecord(last_request_at=now, request_count=1))
            return RateLimitDecision(allowed=True)

        if record.request_count < self._max_requests:
            await self._save(
                key,
                RateLimitRecord(last_request_at=now, request_count=record.request_count + 1),
            )
            return RateLimitDecision(allowed=True)

        # Over the ceiling – lock out
        await self._save(
            key,
            RateLimitRecord(
                last_request_at=now,
                request_count=record.request_count + 1,
                blocked_until=now + self._block,
            ),
        )
        logger.warning(
            "Rate limit exceeded for %r (%d requests) – blocking for %ds",
            action, record.request_count + 1, self._block,
        )
        return RateLimitDecision(allowed=False, wait_seconds=math.ceil(self._block))

    async def _save(self, key: str, record: RateLimitRecord) -> None:
        await self._storage.set(key, record.model_dump_json())

    # ── Administrative ────────────────────────────────────────────────

    async def clear(self, action: str) -> None:
        """Drop the record for *action* unconditionally."""
        try:
            await self._storage.delete(rate_limit_key(action))
        except StorageError:
            logger.exception("Failed to clear rate limit for %r", action)

    async def clear_all(self) -> list[str]:
        """Drop every rate-limit record. Returns the keys that were removed."""
        keys = await self._storage.keys(KEY_PREFIX)
        for key in keys:
            await self._storage.delete(key)
        if keys:
            logger.info("Rate limits cleared: %s", keys)
        else:
            logger.info("No rate limit data found")
        return keys
