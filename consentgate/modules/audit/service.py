import uuid
import logging
from typing import Sequence
from fastapi import Request
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession
from consentgate.modules.audit.models import AuditEvent

log = logging.getLogger(__name__)

class AuditService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def log(self,
                  org_id: uuid.UUID,
                  actor_user_id: uuid.UUID,
                  action: str,
                  resource_type: str,
                  resource_id: str,
                  purpose: str | None = None,
                  request: Request | None = None,
                  success: bool = True,
                  patient_id: uuid.UUID | None = None,
                  details: dict | None = None) -> bool:
        """Best effort: a failed audit write is logged and rolled back, never raised."""
        try:
            ev = AuditEvent(
                org_id=org_id,
                actor_user_id=actor_user_id,
                action=action,
                resource_type=resource_type,
                resource_id=str(resource_id),
                patient_id=patient_id,
                purpose=purpose,
                success=success,
                client_ip=(request.client.host if request and request.client else None),
                user_agent=(request.headers.get("user-agent") if request else None),
                details=details,
            )
            self.session.add(ev)
            await self.session.commit()
            return True
        except Exception:
            log.warning("Audit write failed for %s %s/%s", action, resource_type, resource_id, exc_info=True)
            await self.session.rollback()
            return False

    async def list_for_org(self, org_id: uuid.UUID, limit: int = 50) -> Sequence[AuditEvent]:
        q = select(AuditEvent).where(
            AuditEvent.org_id == org_id,
            AuditEvent.deleted_at.is_(None),
        ).order_by(desc(AuditEvent.occurred_at)).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def list_for_patient(self, patient_id: uuid.UUID, limit: int = 50) -> Sequence[AuditEvent]:
        q = select(AuditEvent).where(
            AuditEvent.patient_id == patient_id,
            AuditEvent.deleted_at.is_(None),
        ).order_by(desc(AuditEvent.occurred_at)).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()
