"""Tests for the per-flow registry (composition root)."""

import asyncio

import pytest

from app.errors import PendingVerificationMissing
from app.models import FlowKind, OutcomeKind
from app.services import entry_flows
from app.services.registry import FlowRegistry
from tests.mocks.models import MOCK_CODE, PENDING_RECOVERY, PENDING_REGISTRATION
from tests.mocks.services import FakeAuthService, FakeClock, MemoryKeyValueStore


@pytest.fixture()
async def registry():
    reg = FlowRegistry(storage=MemoryKeyValueStore(), auth_factory=FakeAuthService)
    await reg.start()
    yield reg
    await reg.stop()


class TestFlowRegistry:
    async def test_missing_pending(self, registry):
        with pytest.raises(PendingVerificationMissing):
            await registry.controller_for("nobody")

    async def test_controller_is_reused(self, registry):
        await registry.pending_store("f1").put(PENDING_REGISTRATION)

        first = await registry.controller_for("f1")
        second = await registry.controller_for("f1")

        assert first is second

    async def test_scopes_are_isolated(self, registry):
        await registry.pending_store("f1").put(PENDING_REGISTRATION)
        await registry.pending_store("f2").put(PENDING_RECOVERY)

        first = await registry.controller_for("f1")
        second = await registry.controller_for("f2")

        assert first.flow_kind != second.flow_kind
        assert registry.auth_for("f1") is not registry.auth_for("f2")

    async def test_outcomes_are_published(self, registry):
        seen = []
        registry.outcomes.subscribe(seen.append)
        await registry.pending_store("f1").put(PENDING_REGISTRATION)
        controller = await registry.controller_for("f1")

        await controller.verify(MOCK_CODE)

        assert [o.kind for o in seen] == [OutcomeKind.SUCCESS]

    async def test_release_keeps_auth_session(self, registry):
        await registry.pending_store("f1").put(PENDING_RECOVERY)
        controller = await registry.controller_for("f1")
        auth = registry.auth_for("f1")

        registry.release("f1")

        assert controller.disposed is True
        assert registry.live_controller("f1") is None
        assert registry.auth_for("f1") is auth

    async def test_reset_flow_drops_auth(self, registry):
        auth = registry.auth_for("f1")
        await registry.reset_flow("f1")
        assert registry.auth_for("f1") is not auth

    async def test_abandon_clears_pending(self, registry):
        await registry.pending_store("f1").put(PENDING_REGISTRATION)
        await registry.controller_for("f1")

        await registry.abandon("f1")

        assert await registry.pending_store("f1").get() is None
        with pytest.raises(PendingVerificationMissing):
            await registry.controller_for("f1")

    async def test_abandon_without_screen(self, registry):
        await registry.pending_store("f1").put(PENDING_REGISTRATION)
        await registry.abandon("f1")
        assert await registry.pending_store("f1").get() is None

    def test_flow_ids_are_unique(self):
        assert FlowRegistry.new_flow_id() != FlowRegistry.new_flow_id()


class TestStaleVerification:
    async def test_restarted_scope_survives_late_success(self, registry):
        await registry.pending_store("f1").put(PENDING_REGISTRATION)
        old = await registry.controller_for("f1")
        old_auth = registry.auth_for("f1")
        old_auth.gate = asyncio.Event()

        in_flight = asyncio.create_task(old.verify(MOCK_CODE))
        await asyncio.sleep(0)
        await registry.reset_flow("f1")
        await entry_flows.forgot_password(
            registry.auth_for("f1"), registry.pending_store("f1"), email="new@example.com",
        )
        new = await registry.controller_for("f1")
        old_auth.gate.set()
        outcome = await in_flight

        assert outcome.kind is OutcomeKind.SUCCESS
        assert registry.finish("f1", old) is False
        assert registry.live_controller("f1") is new
        pending = await registry.pending_store("f1").get()
        assert pending.flow_kind is FlowKind.RECOVERY
        assert pending.email == "new@example.com"


class TestFinish:
    async def test_registration_drops_auth(self, registry):
        await registry.pending_store("f1").put(PENDING_REGISTRATION)
        controller = await registry.controller_for("f1")
        auth = registry.auth_for("f1")
        await controller.verify(MOCK_CODE)

        assert registry.finish("f1", controller) is True
        assert registry.live_controller("f1") is None
        assert registry.active_scopes == 0
        assert registry.auth_for("f1") is not auth

    async def test_recovery_keeps_auth_for_reset(self, registry):
        await registry.pending_store("f1").put(PENDING_RECOVERY)
        controller = await registry.controller_for("f1")
        auth = registry.auth_for("f1")
        await controller.verify(MOCK_CODE)

        assert registry.finish("f1", controller) is True
        assert registry.auth_for("f1") is auth


class TestIdleEviction:
    async def test_idle_scopes_are_evicted(self):
        clock = FakeClock()
        reg = FlowRegistry(
            storage=MemoryKeyValueStore(), auth_factory=FakeAuthService,
            idle_seconds=60, clock=clock,
        )
        controllers = []
        for i in range(100):
            await reg.pending_store(f"f{i}").put(PENDING_REGISTRATION)
            controllers.append(await reg.controller_for(f"f{i}"))
        assert reg.active_scopes == 100

        clock.advance(61)
        reg.auth_for("fresh")

        assert reg.active_scopes == 1
        assert reg.live_controller("f0") is None
        assert all(c.disposed for c in controllers)
        # The pending record outlives eviction: a returning client gets a new screen
        assert (await reg.controller_for("f0")).pending == PENDING_REGISTRATION
        await reg.stop()

    async def test_recently_touched_scope_is_kept(self):
        clock = FakeClock()
        reg = FlowRegistry(
            storage=MemoryKeyValueStore(), auth_factory=FakeAuthService,
            idle_seconds=60, clock=clock,
        )
        await reg.pending_store("f1").put(PENDING_REGISTRATION)
        controller = await reg.controller_for("f1")

        clock.advance(50)
        reg.auth_for("f1")
        clock.advance(50)
        reg.auth_for("other")

        assert reg.live_controller("f1") is controller
        assert reg.active_scopes == 2
        await reg.stop()

    async def test_verifying_scope_is_not_evicted(self):
        clock = FakeClock()
        reg = FlowRegistry(
            storage=MemoryKeyValueStore(), auth_factory=FakeAuthService,
            idle_seconds=60, clock=clock,
        )
        await reg.pending_store("f1").put(PENDING_REGISTRATION)
        controller = await reg.controller_for("f1")
        auth = reg.auth_for("f1")
        auth.gate = asyncio.Event()

        in_flight = asyncio.create_task(controller.verify(MOCK_CODE))
        await asyncio.sleep(0)
        clock.advance(61)
        reg.auth_for("other")
        auth.gate.set()
        await in_flight

        assert reg.live_controller("f1") is controller
        await reg.stop()
