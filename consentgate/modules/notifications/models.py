import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, JSON
from consentgate.core.base import Base, TimestampedTenantMixin, UTCDateTime

class OutboundMessage(Base, TimestampedTenantMixin):
    recipient_id: Mapped[uuid.UUID] = mapped_column(index=True)  # patient the message is for
    channel: Mapped[str] = mapped_column(String(16), default="push")  # push | sms | email
    kind: Mapped[str] = mapped_column(String(48))  # authorization_request | authorization_decision | ...
    subject_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    subject_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    title: Mapped[str | None] = mapped_column(String(120), nullable=True)
    body: Mapped[str] = mapped_column(Text)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="queued")  # queued | sent | failed | completed
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
