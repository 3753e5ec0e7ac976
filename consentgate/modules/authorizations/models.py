import enum
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Boolean, Integer, JSON, Enum, ForeignKey, Index
from consentgate.core.base import Base, TimestampedTenantMixin, UTCDateTime

class GrantStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"

TERMINAL_STATUSES = frozenset({GrantStatus.EXPIRED, GrantStatus.REVOKED})

# explicit transitions; expiry of PENDING/ACTIVE is also derived from expires_at
TRANSITIONS: dict[GrantStatus, frozenset[GrantStatus]] = {
    GrantStatus.PENDING: frozenset({GrantStatus.ACTIVE, GrantStatus.REVOKED, GrantStatus.EXPIRED}),
    GrantStatus.ACTIVE: frozenset({GrantStatus.REVOKED, GrantStatus.EXPIRED}),
    GrantStatus.EXPIRED: frozenset(),
    GrantStatus.REVOKED: frozenset(),
}

def can_transition(src: GrantStatus, dst: GrantStatus) -> bool:
    return dst in TRANSITIONS[src]

class AccessScope(str, enum.Enum):
    VIEW_MEDICAL_HISTORY = "canViewMedicalHistory"
    VIEW_PRESCRIPTIONS = "canViewPrescriptions"
    CREATE_ENCOUNTERS = "canCreateEncounters"
    VIEW_AUDIT_LOGS = "canViewAuditLogs"

SCOPE_COLUMNS: dict[AccessScope, str] = {
    AccessScope.VIEW_MEDICAL_HISTORY: "can_view_medical_history",
    AccessScope.VIEW_PRESCRIPTIONS: "can_view_prescriptions",
    AccessScope.CREATE_ENCOUNTERS: "can_create_encounters",
    AccessScope.VIEW_AUDIT_LOGS: "can_view_audit_logs",
}

class AuthorizationGrant(Base, TimestampedTenantMixin):
    __tablename__ = "authorization_grant"
    __table_args__ = (
        Index("ix_grant_patient_org_status_expiry", "patient_id", "org_id", "status", "expires_at"),
        Index("ix_grant_status_expiry", "status", "expires_at"),
    )

    # org_id is the facility the access is granted to
    patient_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("patient.id"), index=True)
    requesting_practitioner_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("practitioner.id"), nullable=True, index=True)

    status: Mapped[GrantStatus] = mapped_column(Enum(GrantStatus, native_enum=False, length=16), default=GrantStatus.PENDING)
    time_window_hours: Mapped[int] = mapped_column(Integer, default=24)
    granted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime())
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    decision_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    can_view_medical_history: Mapped[bool] = mapped_column(Boolean, default=True)
    can_view_prescriptions: Mapped[bool] = mapped_column(Boolean, default=True)
    can_create_encounters: Mapped[bool] = mapped_column(Boolean, default=False)
    can_view_audit_logs: Mapped[bool] = mapped_column(Boolean, default=False)

    # captured for audit only
    request_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    request_user_agent: Mapped[str | None] = mapped_column(String(256), nullable=True)
    device_info: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    location: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def effective_status(self, now: datetime) -> GrantStatus:
        if self.status in (GrantStatus.PENDING, GrantStatus.ACTIVE) and self.expires_at <= now:
            return GrantStatus.EXPIRED
        return self.status

    def is_effectively_active(self, now: datetime) -> bool:
        return self.status == GrantStatus.ACTIVE and now < self.expires_at

    def has_scope(self, scope: AccessScope) -> bool:
        return bool(getattr(self, SCOPE_COLUMNS[scope]))

    def allows(self, scope: AccessScope, now: datetime) -> bool:
        return self.is_effectively_active(now) and self.has_scope(scope)

    def scope_dict(self) -> dict[str, bool]:
        return {scope.value: self.has_scope(scope) for scope in AccessScope}
