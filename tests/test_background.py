from datetime import timedelta
import pytest
from sqlalchemy import select

from consentgate.core.base import utcnow
from consentgate.modules.authorizations.models import AuthorizationGrant, GrantStatus
from consentgate.modules.authorizations.sweeper import sweep_once
from consentgate.modules.events.outbox import EventOutbox, OutboxService, relay_once, TOPIC, MAX_ATTEMPTS
from consentgate.platform.adapters.bus_noop import NoopEventBus
from consentgate.platform.provider_registry import registry


class RecordingBus:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def publish(self, topic, key, value, headers=None):
        if self.fail:
            raise RuntimeError("bus down")
        self.sent.append((topic, key, value))


@pytest.mark.asyncio
async def test_relay_publishes_pending_events_once(session_factory, world):
    async with session_factory() as s:
        await OutboxService(s).enqueue(world["hospital"].id, "GRANT_REQUESTED", "authorization_grant", "g-1", {"a": 1})
        await s.commit()

    bus = RecordingBus()
    assert await relay_once(session_factory, bus) == 1
    assert await relay_once(session_factory, bus) == 0
    topic, key, value = bus.sent[0]
    assert (topic, key) == (TOPIC, "g-1")
    assert value["type"] == "GRANT_REQUESTED"
    assert value["data"] == {"a": 1}


@pytest.mark.asyncio
async def test_failed_publish_is_retried_later(session_factory, world):
    async with session_factory() as s:
        await OutboxService(s).enqueue(world["hospital"].id, "GRANT_APPROVED", "authorization_grant", "g-2", {})
        await s.commit()

    assert await relay_once(session_factory, RecordingBus(fail=True)) == 1
    async with session_factory() as s:
        ev = (await s.execute(select(EventOutbox))).scalar_one()
        assert ev.status == "pending"
        assert ev.attempts == 1
        assert ev.next_attempt_at > utcnow()
        assert "bus down" in ev.last_error


@pytest.mark.asyncio
async def test_event_is_parked_after_max_attempts(session_factory, world):
    async with session_factory() as s:
        ev = await OutboxService(s).enqueue(world["hospital"].id, "GRANT_DENIED", "authorization_grant", "g-3", {})
        ev.attempts = MAX_ATTEMPTS - 1
        await s.commit()

    assert await relay_once(session_factory, RecordingBus(fail=True)) == 1
    assert await relay_once(session_factory, RecordingBus()) == 0
    async with session_factory() as s:
        assert (await s.execute(select(EventOutbox.status))).scalar_one() == "dead"


@pytest.mark.asyncio
async def test_sweeper_expires_lapsed_grants(session_factory, world):
    past = utcnow() - timedelta(hours=2)
    async with session_factory() as s:
        s.add(AuthorizationGrant(
            org_id=world["hospital"].id, patient_id=world["patient"].id,
            status=GrantStatus.PENDING, time_window_hours=1,
            expires_at=past + timedelta(hours=1), created_at=past, updated_at=past,
        ))
        await s.commit()

    assert await sweep_once(session_factory) == 1
    async with session_factory() as s:
        status = (await s.execute(select(AuthorizationGrant.status))).scalar_one()
        events = (await s.execute(select(EventOutbox.event_type))).scalars().all()
    assert status == GrantStatus.EXPIRED
    assert events == ["GRANT_EXPIRED"]


def test_registry_defaults_to_noop_bus():
    registry.reset()
    assert isinstance(registry.event_bus(), NoopEventBus)
    registry.reset()


@pytest.mark.asyncio
async def test_sweep_emits_one_event_per_changed_row(session_factory, world):
    past = utcnow() - timedelta(hours=3)

    def grant(status, expires_at):
        return AuthorizationGrant(
            org_id=world["hospital"].id, patient_id=world["patient"].id, status=status,
            time_window_hours=1, expires_at=expires_at, created_at=past, updated_at=past,
        )

    async with session_factory() as s:
        s.add_all([grant(GrantStatus.PENDING, past) for _ in range(3)])
        s.add(grant(GrantStatus.ACTIVE, past + timedelta(hours=1)))
        s.add(grant(GrantStatus.REVOKED, past))
        s.add(grant(GrantStatus.ACTIVE, utcnow() + timedelta(hours=1)))
        await s.commit()

    assert await sweep_once(session_factory) == 4
    async with session_factory() as s:
        events = (await s.execute(select(EventOutbox.event_type))).scalars().all()
        statuses = sorted(st.value for st in (await s.execute(select(AuthorizationGrant.status))).scalars().all())
    assert events == ["GRANT_EXPIRED"] * 4
    assert statuses == ["ACTIVE", "EXPIRED", "EXPIRED", "EXPIRED", "EXPIRED", "REVOKED"]
