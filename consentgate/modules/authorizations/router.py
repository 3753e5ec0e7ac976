import uuid
from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from consentgate.core.base import utcnow
from consentgate.core.db import get_session
from consentgate.core.errors import NotFound
from consentgate.core.security import (
    Principal, get_principal, require_roles, require_scopes,
    PATIENT, DOCTOR, PHARMACIST, ADMIN,
)
from consentgate.modules.authorizations.models import AuthorizationGrant, GrantStatus
from consentgate.modules.authorizations.qr import build_patient_qr, encode_qr
from consentgate.modules.authorizations.schemas import (
    AccessRequestCreate, AccessRequestOut, AccessScopeOut, ApproveOut, DenyOut,
    GrantAction, GrantDecision, GrantList, GrantOut, GrantReason, PatientQROut, SweepOut,
)
from consentgate.modules.authorizations.service import AuthorizationService
from consentgate.modules.directory.repository import DirectoryRepository

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> AuthorizationService:
    return AuthorizationService(session)

def _list(grants) -> GrantList:
    now = utcnow()
    items = [GrantOut.from_grant(g, now) for g in grants]
    return GrantList(grants=items, count=len(items))

def _approved(grant: AuthorizationGrant, previous: GrantStatus) -> ApproveOut:
    return ApproveOut(
        grant_id=grant.id,
        previous_status=previous,
        new_status=grant.status,
        granted_at=grant.granted_at,
        expires_at=grant.expires_at,
        time_window_hours=grant.time_window_hours,
        access_scope=AccessScopeOut(**{k: getattr(grant, k) for k in AccessScopeOut.model_fields}),
    )

def _denied(grant: AuthorizationGrant, previous: GrantStatus) -> DenyOut:
    return DenyOut(grant_id=grant.id, previous_status=previous, new_status=grant.status, revoked_at=grant.revoked_at)

@router.post("/authorizations/request", response_model=AccessRequestOut, status_code=201)
async def request_access(
    payload: AccessRequestCreate,
    request: Request,
    response: Response,
    principal: Principal = Depends(require_roles(DOCTOR, PHARMACIST, ADMIN)),
    service: AuthorizationService = Depends(svc),
):
    grant, created = await service.request_access(principal, payload, request=request)
    if not created:
        response.status_code = 200
    out = GrantOut.from_grant(grant, utcnow())
    return AccessRequestOut(**out.model_dump(), existing=not created)

@router.patch("/authorizations/approve", response_model=ApproveOut)
async def approve(
    payload: GrantDecision,
    request: Request,
    principal: Principal = Depends(require_roles(PATIENT)),
    service: AuthorizationService = Depends(svc),
):
    grant, previous = await service.approve(principal, payload.grant_id, payload.reason, request=request)
    return _approved(grant, previous)

@router.patch("/authorizations/deny", response_model=DenyOut)
async def deny(
    payload: GrantDecision,
    request: Request,
    principal: Principal = Depends(require_roles(PATIENT)),
    service: AuthorizationService = Depends(svc),
):
    grant, previous = await service.deny(principal, payload.grant_id, payload.reason, request=request)
    return _denied(grant, previous)

@router.post("/authorizations/{grant_id}/revoke", response_model=DenyOut)
async def revoke(
    grant_id: uuid.UUID,
    request: Request,
    payload: GrantReason | None = None,
    principal: Principal = Depends(require_roles(PATIENT)),
    service: AuthorizationService = Depends(svc),
):
    grant, previous = await service.deny(principal, grant_id, payload.reason if payload else None, request=request)
    return _denied(grant, previous)

@router.post("/authorizations/{grant_id}/action", response_model=ApproveOut | DenyOut)
async def patient_action(
    grant_id: uuid.UUID,
    payload: GrantAction,
    request: Request,
    principal: Principal = Depends(require_roles(PATIENT)),
    service: AuthorizationService = Depends(svc),
):
    if payload.action == "approve":
        grant, previous = await service.approve(principal, grant_id, payload.reason, request=request)
        return _approved(grant, previous)
    grant, previous = await service.deny(principal, grant_id, payload.reason, request=request)
    return _denied(grant, previous)

@router.get("/authorizations/pending", response_model=GrantList)
async def pending(
    principal: Principal = Depends(require_roles(PATIENT)),
    service: AuthorizationService = Depends(svc),
):
    return _list(await service.pending_for_patient(principal.user_id))

@router.get("/authorizations/active", response_model=GrantList)
async def active(
    principal: Principal = Depends(require_roles(PATIENT)),
    service: AuthorizationService = Depends(svc),
):
    return _list(await service.active_for_patient(principal.user_id))

@router.get("/authorizations/history", response_model=GrantList)
async def history(
    status: GrantStatus | None = None,
    limit: int = Query(50, ge=1, le=100),
    include_expired: bool = Query(True, alias="includeExpired"),
    principal: Principal = Depends(require_roles(PATIENT)),
    service: AuthorizationService = Depends(svc),
):
    grants = await service.history_for_patient(principal.user_id, status=status, include_expired=include_expired, limit=limit)
    return _list(grants)

@router.get("/authorizations/organization", response_model=GrantList)
async def organization_grants(
    status: GrantStatus | None = None,
    mine: bool = False,
    include_expired: bool = Query(False, alias="includeExpired"),
    principal: Principal = Depends(require_roles(DOCTOR, PHARMACIST)),
    service: AuthorizationService = Depends(svc),
):
    grants = await service.for_organization(
        principal.org_id, status=status,
        practitioner_id=principal.user_id if mine else None,
        include_expired=include_expired,
    )
    return _list(grants)

@router.post("/authorizations/expire-sweep", response_model=SweepOut, dependencies=[Depends(require_scopes("grants:admin"))])
async def expire_sweep(service: AuthorizationService = Depends(svc)):
    return SweepOut(expired=await service.expire_stale())

@router.get("/authorizations/{grant_id}", response_model=GrantOut)
async def get_grant(
    grant_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: AuthorizationService = Depends(svc),
):
    grant = await service.get_visible(principal, grant_id)
    return GrantOut.from_grant(grant, utcnow())

@router.get("/patients/me/qr", response_model=PatientQROut)
async def my_qr(
    principal: Principal = Depends(require_roles(PATIENT)),
    session: AsyncSession = Depends(get_session),
):
    patient = await DirectoryRepository(session).get_patient(principal.user_id)
    if not patient:
        raise NotFound("Patient not found")
    payload = build_patient_qr(patient.digital_identifier)
    return PatientQROut(payload=payload, encoded=encode_qr(payload))
