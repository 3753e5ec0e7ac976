from datetime import timedelta
import pytest

from consentgate.core.base import utcnow
from consentgate.core.errors import Forbidden
from consentgate.modules.authorizations.access import can_access, evaluate_access, require_access
from consentgate.modules.authorizations.models import AccessScope, AuthorizationGrant, GrantStatus

from conftest import patient_principal, practitioner_principal


async def _grant(session, world, *, status=GrantStatus.ACTIVE, hours=24, granted_ago=timedelta(0), **flags):
    now = utcnow()
    granted_at = now - granted_ago
    grant = AuthorizationGrant(
        org_id=world["hospital"].id,
        patient_id=world["patient"].id,
        requesting_practitioner_id=world["doctor"].id,
        status=status,
        time_window_hours=hours,
        granted_at=granted_at,
        expires_at=granted_at + timedelta(hours=hours),
        **flags,
    )
    session.add(grant)
    await session.commit()
    return grant


@pytest.mark.asyncio
async def test_active_grant_with_scope_allows(session, world):
    grant = await _grant(session, world)
    doctor = practitioner_principal(world["doctor"])
    decision = await evaluate_access(session, doctor, world["patient"].id, world["hospital"].id, AccessScope.VIEW_MEDICAL_HISTORY)
    assert decision.allowed
    assert decision.basis == "grant"
    assert decision.grant_id == grant.id


@pytest.mark.asyncio
async def test_grant_past_expiry_denies_even_if_stored_active(session, world):
    # approved 48 hours ago with a 24 hour window; nothing has swept it yet
    await _grant(session, world, granted_ago=timedelta(hours=48))
    doctor = practitioner_principal(world["doctor"])
    assert not await can_access(session, doctor, world["patient"].id, world["hospital"].id, AccessScope.VIEW_MEDICAL_HISTORY)


@pytest.mark.asyncio
async def test_expiry_boundary_is_exclusive(session, world):
    grant = await _grant(session, world)
    doctor = practitioner_principal(world["doctor"])
    args = (session, doctor, world["patient"].id, world["hospital"].id, AccessScope.VIEW_MEDICAL_HISTORY)
    assert await can_access(*args, at=grant.expires_at - timedelta(seconds=1))
    assert not await can_access(*args, at=grant.expires_at)


@pytest.mark.asyncio
async def test_scope_flag_false_is_forbidden(session, world):
    await _grant(session, world, can_create_encounters=False)
    doctor = practitioner_principal(world["doctor"])
    with pytest.raises(Forbidden):
        await require_access(session, doctor, world["patient"].id, world["hospital"].id, AccessScope.CREATE_ENCOUNTERS)


@pytest.mark.parametrize("status", [GrantStatus.PENDING, GrantStatus.REVOKED, GrantStatus.EXPIRED])
@pytest.mark.asyncio
async def test_only_active_status_authorizes(session, world, status):
    await _grant(session, world, status=status)
    doctor = practitioner_principal(world["doctor"])
    assert not await can_access(session, doctor, world["patient"].id, world["hospital"].id, AccessScope.VIEW_MEDICAL_HISTORY)


@pytest.mark.asyncio
async def test_grant_does_not_leak_to_other_organization(session, world):
    await _grant(session, world)
    other = practitioner_principal(world["other_doctor"])
    assert not await can_access(session, other, world["patient"].id, world["clinic"].id, AccessScope.VIEW_MEDICAL_HISTORY)
    assert not await can_access(session, other, world["patient"].id, world["hospital"].id, AccessScope.VIEW_MEDICAL_HISTORY)


@pytest.mark.asyncio
async def test_attending_practitioner_needs_no_grant(session, world):
    doctor = practitioner_principal(world["other_doctor"])
    decision = await evaluate_access(
        session, doctor, world["patient"].id, world["clinic"].id, AccessScope.VIEW_MEDICAL_HISTORY,
        attending_practitioner_id=world["other_doctor"].id,
    )
    assert decision.allowed
    assert decision.basis == "attending"


@pytest.mark.asyncio
async def test_patient_reads_own_records_only(session, world):
    patient = patient_principal(world["patient"])
    org = world["hospital"].id
    assert await can_access(session, patient, world["patient"].id, org, AccessScope.VIEW_PRESCRIPTIONS)
    assert not await can_access(session, patient, world["patient"].id, org, AccessScope.CREATE_ENCOUNTERS)
    assert not await can_access(session, patient, world["doctor"].id, org, AccessScope.VIEW_PRESCRIPTIONS)
