import uuid
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from consentgate.core.db import get_session
from consentgate.core.security import Principal, get_principal, require_scopes
from consentgate.modules.audit.schemas import AuditEventOut
from consentgate.modules.audit.service import AuditService
from consentgate.modules.authorizations.access import require_access
from consentgate.modules.authorizations.models import AccessScope

router = APIRouter()

def svc(s: AsyncSession = Depends(get_session)) -> AuditService: return AuditService(s)

@router.get("/audit", response_model=list[AuditEventOut])
async def org_audit(
    limit: int = Query(50, ge=1, le=500),
    principal: Principal = Depends(require_scopes("audit:read")),
    service: AuditService = Depends(svc),
):
    return await service.list_for_org(principal.org_id, limit)

@router.get("/patients/{patient_id}/audit", response_model=list[AuditEventOut])
async def patient_audit(
    patient_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=500),
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_session),
    service: AuditService = Depends(svc),
):
    await require_access(session, principal, patient_id, principal.org_id, AccessScope.VIEW_AUDIT_LOGS)
    return await service.list_for_patient(patient_id, limit)
