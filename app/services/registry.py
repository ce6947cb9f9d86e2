"""
Flow registry – the composition root for verification flows.

Each client gets a flow scope id (handed over in a cookie by the entry
flow).  Per scope the registry keeps:

  • one remote auth client (it remembers the session a verify produced)
  • at most one live VerificationController, so duplicate submits for the
    same flow hit the same single-flight flag

Scopes nobody has touched for FLOW_IDLE_SECONDS are evicted on the next
access to any scope.  Their pending records stay in storage, so a client
that comes back just gets a fresh screen.

Shared by all scopes: the key-value store, the rate-limit guard, the
httpx connection pool and the outcome channel.  Initialized once at
application startup.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from typing import Callable

import httpx

from app import config
from app.db import SqliteKeyValueStore
from app.models import FlowKind, VerificationOutcome
from app.rate_limit import OTP_RESEND, RateLimitGuard
from app.services.events import Observable
from app.services.interfaces import KeyValueStore, RemoteAuthService
from app.services.pending import PendingVerificationStore
from app.services.supabase.client import SupabaseAuthClient, build_http_client
from app.services.verification import VerificationController

logger = logging.getLogger(__name__)


def _log_outcome(outcome: VerificationOutcome) -> None:
    logger.info(
        "Flow outcome: %s (%s flow, next=%s)",
        outcome.kind.value, outcome.flow_kind.value, outcome.next_step.value,
    )


class FlowRegistry:
    def __init__(
        self,
        storage: KeyValueStore | None = None,
        auth_factory: Callable[[], RemoteAuthService] | None = None,
        *,
        idle_seconds: float = config.FLOW_IDLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.storage: KeyValueStore = storage or SqliteKeyValueStore()
        self.guard = RateLimitGuard(self.storage)
        self.outcomes: Observable[VerificationOutcome] = Observable()
        self.outcomes.subscribe(_log_outcome)
        self._auth_factory = auth_factory
        self._idle_seconds = idle_seconds
        self._clock = clock
        self._http: httpx.AsyncClient | None = None
        self._auth: dict[str, RemoteAuthService] = {}
        self._controllers: dict[str, VerificationController] = {}
        self._touched: dict[str, float] = {}
        self._create_lock = asyncio.Lock()

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._auth_factory is None and self._http is None:
            self._http = build_http_client()
        logger.info("Flow registry started")

    async def stop(self) -> None:
        """Tear down every live screen and close the HTTP pool."""
        for controller in self._controllers.values():
            controller.dispose()
        self._controllers.clear()
        self._auth.clear()
        self._touched.clear()
        if self._http is not None:
            await self._http.aclose()
            self._http = None
        logger.info("Flow registry stopped")

    # ── Scopes ─────────────────────────────────────────────────────────

    @staticmethod
    def new_flow_id() -> str:
        return secrets.token_urlsafe(16)

    @property
    def active_scopes(self) -> int:
        return len(self._touched)

    def pending_store(self, flow_id: str) -> PendingVerificationStore:
        return PendingVerificationStore(self.storage, scope=flow_id)

    def auth_for(self, flow_id: str) -> RemoteAuthService:
        self._touch(flow_id)
        auth = self._auth.get(flow_id)
        if auth is None:
            auth = self._new_auth()
            self._auth[flow_id] = auth
        return auth

    def _new_auth(self) -> RemoteAuthService:
        if self._auth_factory is not None:
            return self._auth_factory()
        if self._http is None:
            self._http = build_http_client()
        return SupabaseAuthClient(self._http)

    def _touch(self, flow_id: str) -> None:
        now = self._clock()
        self._touched[flow_id] = now
        self._evict_idle(now)

    def _evict_idle(self, now: float) -> None:
        stale = [
            flow_id for flow_id, touched in self._touched.items()
            if now - touched > self._idle_seconds
        ]
        evicted = 0
        for flow_id in stale:
            controller = self._controllers.get(flow_id)
            if controller is not None and controller.is_verifying:
                continue
            self._drop(flow_id)
            evicted += 1
        if evicted:
            logger.info("Evicted %d idle flow scope(s)", evicted)

    def _drop(self, flow_id: str) -> None:
        self.release(flow_id)
        self._auth.pop(flow_id, None)
        self._touched.pop(flow_id, None)

    # ── Controllers ────────────────────────────────────────────────────

    async def controller_for(self, flow_id: str) -> VerificationController:
        """
        Live controller for the scope, starting one if needed.

        Raises PendingVerificationMissing when the scope has nothing to verify.
        """
        # Serialised so two concurrent first requests share one controller
        async with self._create_lock:
            self._touch(flow_id)
            controller = self._controllers.get(flow_id)
            if controller is not None and controller.pending is not None:
                return controller

            controller = VerificationController(
                self.pending_store(flow_id),
                self.auth_for(flow_id),
                self.guard,
                outcomes=self.outcomes,
                resend_action=f"{OTP_RESEND}:{flow_id}",
            )
            await controller.start()
            self._controllers[flow_id] = controller
            return controller

    def live_controller(self, flow_id: str) -> VerificationController | None:
        return self._controllers.get(flow_id)

    def release(self, flow_id: str) -> None:
        """Tear down the scope's screen; its auth session is kept."""
        controller = self._controllers.pop(flow_id, None)
        if controller is not None:
            controller.dispose()

    def finish(self, flow_id: str, controller: VerificationController) -> bool:
        """
        Tear down a screen whose verification succeeded.

        Does nothing if *controller* is no longer the scope's live screen
        (the scope was restarted while it verified).  Only a recovery flow
        keeps its auth session, for the password reset that follows.
        """
        if self.live_controller(flow_id) is not controller:
            return False
        self.release(flow_id)
        if controller.flow_kind is not FlowKind.RECOVERY:
            self._auth.pop(flow_id, None)
            self._touched.pop(flow_id, None)
        return True

    async def reset_flow(self, flow_id: str) -> None:
        """
        Start the scope over: drop its screen and auth session.

        Called before an entry flow stores a new pending verification so a
        stale controller can never verify against the previous record.
        """
        self._drop(flow_id)

    async def abandon(self, flow_id: str) -> None:
        controller = self._controllers.pop(flow_id, None)
        if controller is not None:
            await controller.abandon()
        else:
            await self.pending_store(flow_id).clear()
        self._auth.pop(flow_id, None)
        self._touched.pop(flow_id, None)


# ── Singleton instance ────────────────────────────────────────────────────
registry = FlowRegistry()
