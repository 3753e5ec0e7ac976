import uuid
import logging
from string import Template
from typing import Sequence
from sqlalchemy import select, update, desc
from sqlalchemy.ext.asyncio import AsyncSession
from consentgate.core.base import utcnow
from consentgate.core.config import settings
from consentgate.modules.notifications.models import OutboundMessage
from consentgate.modules.notifications import push

log = logging.getLogger(__name__)

OPEN_STATUSES = ("queued", "sent", "failed")

class NotificationsService:
    def __init__(self, s: AsyncSession): self.s = s

    async def notify(self, org: uuid.UUID, *, recipient_id: uuid.UUID, kind: str, body: str,
                     title: str | None = None, variables: dict | None = None,
                     subject_type: str | None = None, subject_id: str | None = None) -> OutboundMessage | None:
        """Persist and push a patient notification. Best effort: failures are logged, never raised."""
        try:
            rendered_title = Template(title or "").safe_substitute(variables or {})
            rendered_body = Template(body).safe_substitute(variables or {})
            m = OutboundMessage(
                org_id=org, recipient_id=recipient_id, kind=kind,
                subject_type=subject_type, subject_id=subject_id,
                title=rendered_title or None, body=rendered_body, meta=variables or {},
                status="queued",
            )
            self.s.add(m); await self.s.flush()
            if settings.PUSH_WEBHOOK_URL:
                delivered = await push.deliver_push({
                    "recipientId": str(recipient_id),
                    "kind": kind,
                    "title": m.title,
                    "body": m.body,
                    "data": {"subjectType": subject_type, "subjectId": subject_id, **(variables or {})},
                })
                m.status = "sent" if delivered else "failed"
            else:
                # in-app only: the patient polls /notifications
                m.status = "sent"
            await self.s.commit()
            return m
        except Exception:
            log.warning("Notification %s for %s could not be recorded", kind, recipient_id, exc_info=True)
            await self.s.rollback()
            return None

    async def complete_for_subject(self, subject_type: str, subject_id: str, kind: str | None = None) -> int:
        """Close out open notifications once the patient has acted on their subject. Best effort."""
        try:
            q = update(OutboundMessage).where(
                OutboundMessage.subject_type == subject_type,
                OutboundMessage.subject_id == subject_id,
                OutboundMessage.status.in_(OPEN_STATUSES),
            )
            if kind:
                q = q.where(OutboundMessage.kind == kind)
            res = await self.s.execute(
                q.values(status="completed", processed_at=utcnow()).execution_options(synchronize_session=False)
            )
            await self.s.commit()
            return res.rowcount or 0
        except Exception:
            log.warning("Could not complete notifications for %s/%s", subject_type, subject_id, exc_info=True)
            await self.s.rollback()
            return 0

    async def list_for_recipient(self, recipient_id: uuid.UUID, limit: int = 50) -> Sequence[OutboundMessage]:
        res = await self.s.execute(
            select(OutboundMessage)
            .where(OutboundMessage.recipient_id == recipient_id, OutboundMessage.deleted_at.is_(None))
            .order_by(desc(OutboundMessage.created_at))
            .limit(limit)
        )
        return res.scalars().all()
