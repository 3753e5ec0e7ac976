import uuid
from datetime import datetime
from typing import Any, Literal
from pydantic import Field, field_validator
from consentgate.core.config import settings
from consentgate.core.schemas import CamelModel
from consentgate.modules.authorizations.models import AuthorizationGrant, GrantStatus, TERMINAL_STATUSES

class AccessScopeIn(CamelModel):
    can_view_medical_history: bool = True
    can_view_prescriptions: bool = True
    can_create_encounters: bool = False
    can_view_audit_logs: bool = False

class AccessScopeOut(AccessScopeIn):
    pass

class GeoLocation(CamelModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

class RequestMetadataIn(CamelModel):
    device_info: dict[str, Any] | None = None
    location: GeoLocation | None = None

class AccessRequestCreate(CamelModel):
    scanned_qr_data: str | dict[str, Any] = Field(..., alias="scannedQRData")
    organization_id: uuid.UUID
    requesting_practitioner_id: uuid.UUID
    access_scope: AccessScopeIn = Field(default_factory=AccessScopeIn)
    time_window_hours: int = Field(default_factory=lambda: settings.GRANT_DEFAULT_TIME_WINDOW_HOURS)
    request_metadata: RequestMetadataIn | None = None

    @field_validator("time_window_hours")
    @classmethod
    def _window_in_range(cls, v: int):
        if v < 1 or v > settings.GRANT_MAX_TIME_WINDOW_HOURS:
            raise ValueError(f"timeWindowHours must be between 1 and {settings.GRANT_MAX_TIME_WINDOW_HOURS}")
        return v

class GrantDecision(CamelModel):
    grant_id: uuid.UUID
    reason: str | None = Field(default=None, max_length=500)

class GrantAction(CamelModel):
    action: Literal["approve", "deny"]
    reason: str | None = Field(default=None, max_length=500)

class GrantReason(CamelModel):
    reason: str | None = Field(default=None, max_length=500)

class GrantOut(CamelModel):
    grant_id: uuid.UUID
    patient_id: uuid.UUID
    organization_id: uuid.UUID
    requesting_practitioner_id: uuid.UUID | None
    status: GrantStatus
    access_scope: AccessScopeOut
    time_window_hours: int
    created_at: datetime
    granted_at: datetime | None
    expires_at: datetime
    revoked_at: datetime | None
    remaining_minutes: int

    @classmethod
    def from_grant(cls, g: AuthorizationGrant, now: datetime) -> "GrantOut":
        status = g.effective_status(now)
        remaining = 0
        if status not in TERMINAL_STATUSES:
            remaining = max(0, int((g.expires_at - now).total_seconds() // 60))
        return cls(
            grant_id=g.id,
            patient_id=g.patient_id,
            organization_id=g.org_id,
            requesting_practitioner_id=g.requesting_practitioner_id,
            status=status,
            access_scope=AccessScopeOut(
                can_view_medical_history=g.can_view_medical_history,
                can_view_prescriptions=g.can_view_prescriptions,
                can_create_encounters=g.can_create_encounters,
                can_view_audit_logs=g.can_view_audit_logs,
            ),
            time_window_hours=g.time_window_hours,
            created_at=g.created_at,
            granted_at=g.granted_at,
            expires_at=g.expires_at,
            revoked_at=g.revoked_at,
            remaining_minutes=remaining,
        )

class AccessRequestOut(GrantOut):
    existing: bool = False

class ApproveOut(CamelModel):
    grant_id: uuid.UUID
    previous_status: GrantStatus
    new_status: GrantStatus
    granted_at: datetime
    expires_at: datetime
    time_window_hours: int
    access_scope: AccessScopeOut

class DenyOut(CamelModel):
    grant_id: uuid.UUID
    previous_status: GrantStatus
    new_status: GrantStatus
    revoked_at: datetime

class GrantList(CamelModel):
    grants: list[GrantOut]
    count: int

class SweepOut(CamelModel):
    expired: int

class PatientQROut(CamelModel):
    payload: dict[str, Any]
    encoded: str
