import uuid
import logging
from datetime import datetime, timedelta
from typing import Sequence
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from consentgate.core.base import utcnow
from consentgate.core.config import settings
from consentgate.core.errors import NotFound, Forbidden, InvalidState, ValidationError
from consentgate.core.security import Principal
from consentgate.modules.audit.service import AuditService
from consentgate.modules.authorizations.models import AuthorizationGrant, GrantStatus, can_transition
from consentgate.modules.authorizations.qr import parse_patient_qr
from consentgate.modules.authorizations.repository import GrantRepository
from consentgate.modules.authorizations.schemas import AccessRequestCreate
from consentgate.modules.directory.repository import DirectoryRepository
from consentgate.modules.events.outbox import OutboxService
from consentgate.modules.notifications.service import NotificationsService

log = logging.getLogger(__name__)

RESOURCE = "authorization_grant"
REQUEST_KIND = "authorization_request"
DECISION_KIND = "authorization_decision"

def _client_ip(request: Request | None) -> str | None:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None

class AuthorizationService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = GrantRepository(session)
        self.directory = DirectoryRepository(session)
        self.audit = AuditService(session)
        self.notifications = NotificationsService(session)

    # ---- Request ----
    async def request_access(self, principal: Principal, payload: AccessRequestCreate,
                             request: Request | None = None, at: datetime | None = None) -> tuple[AuthorizationGrant, bool]:
        """Create a PENDING grant from a scanned patient QR code.

        Returns ``(grant, created)``; ``created`` is False when an active grant
        or an identical open request already covers the caller.
        """
        now = at or utcnow()
        try:
            qr = parse_patient_qr(payload.scanned_qr_data, now=now)
        except ValidationError:
            await self.audit.log(payload.organization_id, principal.user_id, "INVALID_QR_CODE_SCAN", RESOURCE, "-",
                                 request=request, success=False)
            raise

        if principal.is_practitioner:
            if principal.user_id != payload.requesting_practitioner_id:
                raise Forbidden("Practitioners may only request access for themselves")
            if principal.org_id != payload.organization_id:
                raise Forbidden("Practitioner does not act for this organization")

        organization = await self.directory.get_organization(payload.organization_id)
        if not organization:
            raise NotFound("Organization not found")
        practitioner = await self.directory.get_practitioner(payload.requesting_practitioner_id)
        if not practitioner:
            raise NotFound("Practitioner not found")
        if practitioner.org_id != organization.id:
            raise Forbidden("Practitioner does not belong to the specified organization")
        if not practitioner.active:
            raise Forbidden("Practitioner account is not active")

        patient = await self.directory.get_patient_by_digital_id(qr.digital_identifier)
        if not patient:
            await self.audit.log(organization.id, principal.user_id, "PATIENT_NOT_FOUND", RESOURCE, "-",
                                 request=request, success=False, details={"digitalIdentifier": qr.digital_identifier})
            raise NotFound("Patient not found")

        existing = await self.repo.find_active(patient.id, organization.id, now)
        if existing is None and settings.GRANT_DEDUPE_PENDING:
            existing = await self.repo.find_open_pending(patient.id, organization.id, practitioner.id, now)
        if existing is not None:
            log.info("Reusing grant %s (%s) for patient %s / org %s", existing.id, existing.status.value, patient.id, organization.id)
            return existing, False

        scope = payload.access_scope
        meta = payload.request_metadata
        grant = await self.repo.create(
            organization.id,
            patient_id=patient.id,
            requesting_practitioner_id=practitioner.id,
            status=GrantStatus.PENDING,
            time_window_hours=payload.time_window_hours,
            expires_at=now + timedelta(hours=payload.time_window_hours),
            can_view_medical_history=scope.can_view_medical_history,
            can_view_prescriptions=scope.can_view_prescriptions,
            can_create_encounters=scope.can_create_encounters,
            can_view_audit_logs=scope.can_view_audit_logs,
            request_ip=_client_ip(request),
            request_user_agent=(request.headers.get("user-agent", "unknown") if request else None),
            device_info=(meta.device_info if meta else None),
            location=(meta.location.model_dump() if meta and meta.location else None),
            created_at=now,
            updated_at=now,
        )
        await OutboxService(self.session).enqueue(
            organization.id, "GRANT_REQUESTED", RESOURCE, grant.id,
            {"patient_id": str(patient.id), "practitioner_id": str(practitioner.id),
             "scope": grant.scope_dict(), "time_window_hours": grant.time_window_hours},
        )
        await self.session.commit()

        # a failed side effect rolls the session back and expires loaded rows
        grant_id, org_id, patient_id = grant.id, organization.id, patient.id
        variables = {"organization": organization.name, "hours": grant.time_window_hours,
                     "practitioner": practitioner.display_name, "grantId": str(grant_id)}
        details = {"scope": grant.scope_dict(), "timeWindowHours": grant.time_window_hours}

        ok = await self.audit.log(org_id, principal.user_id, "AUTHORIZATION_REQUEST_CREATED", RESOURCE, str(grant_id),
                                  request=request, patient_id=patient_id, details=details)
        sent = await self.notifications.notify(
            org_id, recipient_id=patient_id, kind=REQUEST_KIND,
            title="Access request",
            body="${organization} requests access to your records for ${hours} hours",
            variables=variables,
            subject_type=RESOURCE, subject_id=str(grant_id),
        )
        if not ok or sent is None:
            await self.session.refresh(grant)
        return grant, True

    # ---- Patient decisions ----
    async def _owned(self, principal: Principal, grant_id: uuid.UUID) -> AuthorizationGrant:
        grant = await self.repo.get(grant_id)
        # a grant owned by someone else is reported as missing
        if grant is None or grant.patient_id != principal.user_id:
            raise NotFound("Authorization grant not found")
        return grant

    def _check_transition(self, grant: AuthorizationGrant, target: GrantStatus, now: datetime, verb: str) -> GrantStatus:
        current = grant.effective_status(now)
        if not can_transition(current, target):
            raise InvalidState(f"Cannot {verb} grant with status: {current.value}")
        return current

    async def approve(self, principal: Principal, grant_id: uuid.UUID, reason: str | None = None,
                      request: Request | None = None, at: datetime | None = None) -> tuple[AuthorizationGrant, GrantStatus]:
        now = at or utcnow()
        grant = await self._owned(principal, grant_id)
        previous = self._check_transition(grant, GrantStatus.ACTIVE, now, "approve")

        ok = await self.repo.transition(
            grant.id, patient_id=principal.user_id,
            from_state=previous, to=GrantStatus.ACTIVE, at=now,
            granted_at=now, expires_at=now + timedelta(hours=grant.time_window_hours),
            decision_reason=reason,
        )
        if not ok:
            await self.session.rollback()
            raise InvalidState("Cannot approve grant: it was decided concurrently")
        await OutboxService(self.session).enqueue(
            grant.org_id, "GRANT_APPROVED", RESOURCE, grant.id,
            {"patient_id": str(grant.patient_id), "granted_at": now.isoformat()},
        )
        await self.session.commit()
        await self.session.refresh(grant)

        await self._after_decision(principal, grant, "PATIENT_APPROVED_ACCESS", previous, reason, request)
        return grant, previous

    async def deny(self, principal: Principal, grant_id: uuid.UUID, reason: str | None = None,
                   request: Request | None = None, at: datetime | None = None) -> tuple[AuthorizationGrant, GrantStatus]:
        """Deny a pending request or revoke an active grant."""
        now = at or utcnow()
        grant = await self._owned(principal, grant_id)
        previous = self._check_transition(grant, GrantStatus.REVOKED, now, "deny")

        # only the state seen here may be left: a deny never revokes a grant approved meanwhile
        ok = await self.repo.transition(
            grant.id, patient_id=principal.user_id,
            from_state=previous, to=GrantStatus.REVOKED, at=now,
            revoked_at=now, decision_reason=reason,
        )
        if not ok:
            await self.session.rollback()
            raise InvalidState("Cannot deny grant: it was decided concurrently")
        event = "GRANT_DENIED" if previous == GrantStatus.PENDING else "GRANT_REVOKED"
        await OutboxService(self.session).enqueue(
            grant.org_id, event, RESOURCE, grant.id,
            {"patient_id": str(grant.patient_id), "previous_status": previous.value},
        )
        await self.session.commit()
        await self.session.refresh(grant)

        action = "PATIENT_DENIED_ACCESS" if previous == GrantStatus.PENDING else "PATIENT_REVOKED_ACCESS"
        await self._after_decision(principal, grant, action, previous, reason, request)
        return grant, previous

    async def _after_decision(self, principal: Principal, grant: AuthorizationGrant, action: str,
                              previous: GrantStatus, reason: str | None, request: Request | None) -> None:
        # side effects never undo the committed transition
        grant_id, org_id, patient_id = grant.id, grant.org_id, grant.patient_id
        practitioner_id, status = grant.requesting_practitioner_id, grant.status
        await self.audit.log(org_id, principal.user_id, action, RESOURCE, str(grant_id),
                             request=request, patient_id=patient_id,
                             details={"previousStatus": previous.value, "newStatus": status.value, "reason": reason})
        await self.notifications.complete_for_subject(RESOURCE, str(grant_id), kind=REQUEST_KIND)
        if practitioner_id:
            await self.notifications.notify(
                org_id, recipient_id=practitioner_id, kind=DECISION_KIND,
                title="Access request ${decision}", body="The patient has ${decision} your access request",
                variables={"decision": "approved" if status == GrantStatus.ACTIVE else "denied", "grantId": str(grant_id)},
                subject_type=RESOURCE, subject_id=str(grant_id),
            )
        # any failed side effect has rolled back and expired the grant
        await self.session.refresh(grant)

    # ---- Reads ----
    async def get_visible(self, principal: Principal, grant_id: uuid.UUID) -> AuthorizationGrant:
        grant = await self.repo.get(grant_id)
        if grant is None:
            raise NotFound("Authorization grant not found")
        if principal.is_patient and grant.patient_id == principal.user_id:
            return grant
        if principal.is_practitioner and grant.org_id == principal.org_id:
            return grant
        if principal.has_role("admin"):
            return grant
        raise NotFound("Authorization grant not found")

    async def pending_for_patient(self, patient_id: uuid.UUID, at: datetime | None = None) -> Sequence[AuthorizationGrant]:
        return await self.repo.list_for_patient(patient_id, at=at or utcnow(), status=GrantStatus.PENDING, limit=100)

    async def active_for_patient(self, patient_id: uuid.UUID, at: datetime | None = None) -> Sequence[AuthorizationGrant]:
        return await self.repo.list_for_patient(patient_id, at=at or utcnow(), status=GrantStatus.ACTIVE, limit=100)

    async def history_for_patient(self, patient_id: uuid.UUID, *, status: GrantStatus | None = None,
                                  include_expired: bool = True, limit: int = 50,
                                  at: datetime | None = None) -> Sequence[AuthorizationGrant]:
        return await self.repo.list_for_patient(patient_id, at=at or utcnow(), status=status,
                                                include_expired=include_expired, limit=limit)

    async def for_organization(self, org_id: uuid.UUID, *, status: GrantStatus | None = None,
                               practitioner_id: uuid.UUID | None = None, include_expired: bool = False,
                               at: datetime | None = None) -> Sequence[AuthorizationGrant]:
        return await self.repo.list_for_org(org_id, at=at or utcnow(), status=status,
                                            practitioner_id=practitioner_id, include_expired=include_expired)

    # ---- Expiry ----
    async def expire_stale(self, at: datetime | None = None) -> int:
        """Persist EXPIRED for grants past expires_at. Access checks do not depend on this."""
        now = at or utcnow()
        expired = await self.repo.mark_expired(now)
        outbox = OutboxService(self.session)
        for gid, org_id in expired:
            await outbox.enqueue(org_id, "GRANT_EXPIRED", RESOURCE, gid, {"expired_at": now.isoformat()})
        await self.session.commit()
        return len(expired)
