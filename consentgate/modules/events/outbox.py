"""Grant lifecycle events, written in the same transaction as the state change
and relayed to the event bus by a background task."""
import uuid
import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Text, JSON, Index, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consentgate.core.base import Base, TimestampedTenantMixin, UTCDateTime, utcnow
from consentgate.platform.provider_registry import registry

log = logging.getLogger("event.outbox")

TOPIC = "consentgate.events"
MAX_ATTEMPTS = 10
MAX_BACKOFF_SECONDS = 60

class EventOutbox(Base, TimestampedTenantMixin):
    __tablename__ = "event_outbox"
    __table_args__ = (Index("ix_outbox_status_next_attempt", "status", "next_attempt_at"),)

    event_type: Mapped[str] = mapped_column(String(64))  # GRANT_REQUESTED | GRANT_APPROVED | GRANT_DENIED | ...
    subject_type: Mapped[str] = mapped_column(String(32))
    subject_id: Mapped[str] = mapped_column(String(64))
    payload: Mapped[dict] = mapped_column(JSON)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)

    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending | processing | sent | dead
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def envelope(self) -> dict:
        return {
            "id": str(self.id),
            "orgId": str(self.org_id),
            "type": self.event_type,
            "subject": {"type": self.subject_type, "id": self.subject_id},
            "occurredAt": self.occurred_at.isoformat(),
            "data": self.payload,
        }

def retry_delay(attempts: int) -> timedelta:
    return timedelta(seconds=min(MAX_BACKOFF_SECONDS, 2 ** attempts))

class OutboxRepository:
    def __init__(self, session: AsyncSession):
        self.s = session

    async def add(self, org_id: uuid.UUID, **data) -> EventOutbox:
        obj = EventOutbox(org_id=org_id, **data); self.s.add(obj); await self.s.flush(); return obj

    async def due(self, limit: int = 50) -> list[EventOutbox]:
        # rows claimed here stay locked until the relay commits (no-op on sqlite)
        q = (
            select(EventOutbox)
            .where(
                EventOutbox.status == "pending",
                EventOutbox.next_attempt_at <= utcnow(),
                EventOutbox.deleted_at.is_(None),
            )
            .order_by(EventOutbox.occurred_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        rows = list((await self.s.execute(q)).scalars().all())
        for ev in rows:
            ev.status = "processing"
        await self.s.flush()
        return rows

    def delivered(self, ev: EventOutbox) -> None:
        ev.status, ev.last_error = "sent", None

    def failed(self, ev: EventOutbox, error: str) -> None:
        ev.attempts = (ev.attempts or 0) + 1
        ev.last_error = error[:2000]
        if ev.attempts >= MAX_ATTEMPTS:
            ev.status = "dead"
            log.error("Outbox event %s (%s) gave up after %d attempts", ev.id, ev.event_type, ev.attempts)
            return
        ev.status = "pending"
        ev.next_attempt_at = utcnow() + retry_delay(ev.attempts)

class OutboxService:
    def __init__(self, session: AsyncSession):
        self.repo = OutboxRepository(session)

    async def enqueue(self, org_id: uuid.UUID, event_type: str, subject_type: str,
                      subject_id: str | uuid.UUID, payload: dict) -> EventOutbox:
        """Stage an event; it is only visible to the relay once the caller commits."""
        now = utcnow()
        return await self.repo.add(
            org_id, event_type=event_type, subject_type=subject_type, subject_id=str(subject_id),
            payload=payload, occurred_at=now, next_attempt_at=now, status="pending", attempts=0,
        )

async def relay_once(session_factory: async_sessionmaker, bus=None, limit: int = 50) -> int:
    """Publish one batch of due events; returns how many were claimed."""
    bus = bus or registry.event_bus()
    async with session_factory() as session:
        repo = OutboxRepository(session)
        try:
            batch = await repo.due(limit=limit)
            for ev in batch:
                try:
                    await bus.publish(topic=TOPIC, key=ev.subject_id, value=ev.envelope(),
                                      headers={"eventType": ev.event_type})
                    repo.delivered(ev)
                except Exception as ex:
                    log.warning("Publishing outbox event %s failed: %s", ev.id, ex)
                    repo.failed(ev, str(ex))
            await session.commit()
            return len(batch)
        except Exception:
            await session.rollback()
            raise

async def run_outbox_relay(session_factory: async_sessionmaker, poll_interval_seconds: float = 1.0):
    bus = registry.event_bus()
    log.info("Outbox relay started with bus=%s", bus.__class__.__name__)
    try:
        while True:
            try:
                claimed = await relay_once(session_factory, bus)
            except Exception:
                log.exception("Outbox relay iteration failed")
                claimed = 0
            # drain backlog without sleeping
            await asyncio.sleep(0 if claimed else poll_interval_seconds)
    except asyncio.CancelledError:
        log.info("Outbox relay cancelled; shutting down")
        raise
