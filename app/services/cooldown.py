"""
Resend cooldown countdown.

Ticks once per second on the running event loop until it reaches zero,
at which point resend becomes available again.  Re-arming replaces the
running countdown (30s normal → 300s when rate limited).  Nothing is
persisted: the durable abuse control is the RateLimitGuard.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

logger = logging.getLogger(__name__)


class ResendCooldownTimer:
    def __init__(
        self,
        *,
        on_tick: Callable[[int], None] | None = None,
        tick_seconds: float = 1.0,
    ) -> None:
        self._on_tick = on_tick
        self._tick_seconds = tick_seconds
        self._remaining = 0
        self._task: asyncio.Task[None] | None = None

    # ── State ──────────────────────────────────────────────────────────

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def available(self) -> bool:
        return self._remaining == 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Control ────────────────────────────────────────────────────────

    def arm(self, seconds: int) -> None:
        """Start a countdown of *seconds*, replacing any running one."""
        self.cancel()
        self._remaining = max(0, int(seconds))
        if self._remaining == 0:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._countdown(), name="resend-cooldown"
        )
        logger.debug("Resend cooldown armed for %ds", self._remaining)

    def cancel(self) -> None:
        """Stop the countdown now and make resend available."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._remaining = 0

    async def stop(self) -> None:
        """Cancel and wait for the countdown task to finish unwinding."""
        task = self._task
        self.cancel()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def wait(self) -> None:
        """Block until the current countdown reaches zero (or is cancelled)."""
        task = self._task
        if task is None:
            return
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    # ── Loop ───────────────────────────────────────────────────────────

    async def _countdown(self) -> None:
        while self._remaining > 0:
            await asyncio.sleep(self._tick_seconds)
            self._remaining -= 1
            if self._on_tick is not None:
                try:
                    self._on_tick(self._remaining)
                except Exception:
                    logger.exception("Cooldown tick callback failed")
        if self._task is asyncio.current_task():
            self._task = None
