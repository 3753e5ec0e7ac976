"""Single capability check for clinical records.

Two independent paths can authorize a caller and both are always evaluated:

* ownership: the patient reading their own records, or the attending
  practitioner of the record being touched;
* consent: an ``ACTIVE`` grant, not past ``expires_at``, for the patient and
  the caller's organization, with the required scope flag set.

Every protected handler calls :func:`require_access` (or :func:`can_access`)
instead of querying grants itself.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from consentgate.core.base import utcnow
from consentgate.core.errors import Forbidden
from consentgate.core.security import Principal
from consentgate.modules.authorizations.models import AccessScope
from consentgate.modules.authorizations.repository import GrantRepository

# what a patient may do with their own records without any grant
SELF_SCOPES = frozenset({
    AccessScope.VIEW_MEDICAL_HISTORY,
    AccessScope.VIEW_PRESCRIPTIONS,
    AccessScope.VIEW_AUDIT_LOGS,
})

@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    basis: str | None = None  # self | attending | grant
    grant_id: uuid.UUID | None = None
    reason: str | None = None

async def evaluate_access(
    session: AsyncSession,
    subject: Principal,
    patient_id: uuid.UUID,
    organization_id: uuid.UUID,
    scope: AccessScope,
    *,
    attending_practitioner_id: uuid.UUID | None = None,
    at: datetime | None = None,
) -> AccessDecision:
    if subject.is_patient:
        if subject.user_id == patient_id and scope in SELF_SCOPES:
            return AccessDecision(True, basis="self")
        return AccessDecision(False, reason="Patients may only read their own records")

    if not subject.is_practitioner:
        return AccessDecision(False, reason="Caller is not a practitioner")

    if attending_practitioner_id is not None and subject.user_id == attending_practitioner_id:
        return AccessDecision(True, basis="attending")

    if subject.org_id != organization_id:
        return AccessDecision(False, reason="Practitioner does not act for this organization")

    grant = await GrantRepository(session).find_authorizing_grant(
        patient_id, organization_id, scope, at or utcnow()
    )
    if grant is None:
        return AccessDecision(False, reason=f"No active authorization grant with {scope.value}")
    return AccessDecision(True, basis="grant", grant_id=grant.id)

async def can_access(
    session: AsyncSession,
    subject: Principal,
    patient_id: uuid.UUID,
    organization_id: uuid.UUID,
    scope: AccessScope,
    **kwargs,
) -> bool:
    decision = await evaluate_access(session, subject, patient_id, organization_id, scope, **kwargs)
    return decision.allowed

async def require_access(
    session: AsyncSession,
    subject: Principal,
    patient_id: uuid.UUID,
    organization_id: uuid.UUID,
    scope: AccessScope,
    **kwargs,
) -> AccessDecision:
    decision = await evaluate_access(session, subject, patient_id, organization_id, scope, **kwargs)
    if not decision.allowed:
        raise Forbidden(decision.reason)
    return decision
