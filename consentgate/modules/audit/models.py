import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, JSON
from consentgate.core.base import Base, TimestampedTenantMixin, UTCDateTime, utcnow

class AuditEvent(Base, TimestampedTenantMixin):
    # who / tenant
    actor_user_id: Mapped[uuid.UUID] = mapped_column()
    # What happened
    action: Mapped[str] = mapped_column(String(48))  # AUTHORIZATION_REQUESTED | PATIENT_APPROVED_ACCESS | ENCOUNTER_READ | ...
    resource_type: Mapped[str] = mapped_column(String(48))  # authorization_grant | encounter | prescription | audit
    resource_id: Mapped[str] = mapped_column(String(64))     # UUID as string, or "-"
    patient_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    purpose: Mapped[str | None] = mapped_column(String(64), nullable=True)
    success: Mapped[bool] = mapped_column(default=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(256), nullable=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
