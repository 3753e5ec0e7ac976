from datetime import timedelta
import pytest
from sqlalchemy import select

from consentgate.core.base import utcnow
from consentgate.core.errors import Forbidden, InvalidState, NotFound, ValidationError
from consentgate.modules.audit.models import AuditEvent
from consentgate.modules.authorizations.models import AuthorizationGrant, GrantStatus, TERMINAL_STATUSES, can_transition
from consentgate.modules.authorizations.repository import GrantRepository
from consentgate.modules.authorizations.service import AuthorizationService
from consentgate.modules.events.outbox import EventOutbox
from consentgate.modules.notifications.models import OutboundMessage
from consentgate.modules.directory.models import Patient

from conftest import access_request, patient_principal, practitioner_principal


async def _request(session, world, **overrides):
    svc = AuthorizationService(session)
    doctor = world["doctor"]
    grant, created = await svc.request_access(practitioner_principal(doctor), access_request(world["patient"], doctor, **overrides))
    return grant, created


@pytest.mark.asyncio
async def test_request_creates_pending_grant_with_side_effects(session, world):
    grant, created = await _request(session, world)
    assert created is True
    assert grant.status == GrantStatus.PENDING
    assert grant.org_id == world["hospital"].id
    assert grant.patient_id == world["patient"].id
    assert grant.time_window_hours == 24

    notes = (await session.execute(select(OutboundMessage))).scalars().all()
    assert [n.recipient_id for n in notes] == [world["patient"].id]
    assert "City Hospital" in notes[0].body
    actions = (await session.execute(select(AuditEvent.action))).scalars().all()
    assert "AUTHORIZATION_REQUEST_CREATED" in actions
    events = (await session.execute(select(EventOutbox.event_type))).scalars().all()
    assert events == ["GRANT_REQUESTED"]


@pytest.mark.asyncio
async def test_request_for_unknown_patient_is_not_found(session, world):
    qr = {"type": "health_access_request", "digitalIdentifier": "HID-NOPE"}
    with pytest.raises(NotFound):
        await _request(session, world, scannedQRData=qr)


@pytest.mark.asyncio
async def test_invalid_qr_is_rejected_and_audited(session, world):
    with pytest.raises(ValidationError):
        await _request(session, world, scannedQRData="garbage")
    actions = (await session.execute(select(AuditEvent.action))).scalars().all()
    assert actions == ["INVALID_QR_CODE_SCAN"]


@pytest.mark.asyncio
async def test_practitioner_cannot_request_for_another_org(session, world):
    svc = AuthorizationService(session)
    other = world["other_doctor"]
    payload = access_request(world["patient"], world["doctor"])
    with pytest.raises(Forbidden):
        await svc.request_access(practitioner_principal(other), payload)


@pytest.mark.asyncio
async def test_open_pending_request_is_reused(session, world):
    first, _ = await _request(session, world)
    second, created = await _request(session, world)
    assert created is False
    assert second.id == first.id


@pytest.mark.asyncio
async def test_approve_sets_exact_window(session, world):
    grant, _ = await _request(session, world, timeWindowHours=48)
    svc = AuthorizationService(session)
    at = utcnow() + timedelta(minutes=5)
    approved, previous = await svc.approve(patient_principal(world["patient"]), grant.id, at=at)
    assert previous == GrantStatus.PENDING
    assert approved.status == GrantStatus.ACTIVE
    assert approved.granted_at == at
    assert approved.expires_at - approved.granted_at == timedelta(hours=48)

    practitioner_notes = (await session.execute(
        select(OutboundMessage).where(OutboundMessage.recipient_id == world["doctor"].id)
    )).scalars().all()
    assert practitioner_notes and "approved" in practitioner_notes[0].body
    patient_note_status = (await session.execute(
        select(OutboundMessage.status).where(OutboundMessage.recipient_id == world["patient"].id)
    )).scalar_one()
    assert patient_note_status == "completed"


@pytest.mark.asyncio
async def test_active_grant_is_returned_for_new_requests(session, world):
    grant, _ = await _request(session, world)
    await AuthorizationService(session).approve(patient_principal(world["patient"]), grant.id)
    again, created = await _request(session, world)
    assert created is False
    assert again.id == grant.id
    assert again.status == GrantStatus.ACTIVE


@pytest.mark.asyncio
async def test_approve_twice_is_invalid_state(session, world):
    grant, _ = await _request(session, world)
    svc = AuthorizationService(session)
    await svc.approve(patient_principal(world["patient"]), grant.id)
    with pytest.raises(InvalidState):
        await svc.approve(patient_principal(world["patient"]), grant.id)


@pytest.mark.asyncio
async def test_deny_pending_then_revoke_is_rejected(session, world):
    grant, _ = await _request(session, world)
    svc = AuthorizationService(session)
    patient = patient_principal(world["patient"])
    denied, previous = await svc.deny(patient, grant.id, reason="not today")
    assert previous == GrantStatus.PENDING
    assert denied.status == GrantStatus.REVOKED
    assert denied.revoked_at is not None
    assert denied.decision_reason == "not today"
    with pytest.raises(InvalidState):
        await svc.approve(patient, grant.id)
    with pytest.raises(InvalidState):
        await svc.deny(patient, grant.id)


@pytest.mark.asyncio
async def test_revoke_active_grant(session, world):
    grant, _ = await _request(session, world)
    svc = AuthorizationService(session)
    patient = patient_principal(world["patient"])
    await svc.approve(patient, grant.id)
    revoked, previous = await svc.deny(patient, grant.id)
    assert previous == GrantStatus.ACTIVE
    assert revoked.status == GrantStatus.REVOKED
    events = (await session.execute(select(EventOutbox.event_type).order_by(EventOutbox.occurred_at))).scalars().all()
    assert events[-1] == "GRANT_REVOKED"


@pytest.mark.asyncio
async def test_expired_pending_cannot_be_approved(session, world):
    grant, _ = await _request(session, world, timeWindowHours=1)
    svc = AuthorizationService(session)
    with pytest.raises(InvalidState):
        await svc.approve(patient_principal(world["patient"]), grant.id, at=utcnow() + timedelta(hours=2))


@pytest.mark.asyncio
async def test_other_patient_sees_not_found(session, world):
    grant, _ = await _request(session, world)
    stranger = Patient(legal_name="Other Person", digital_identifier="HID-0002")
    session.add(stranger)
    await session.commit()
    svc = AuthorizationService(session)
    with pytest.raises(NotFound):
        await svc.approve(patient_principal(stranger), grant.id)
    with pytest.raises(NotFound):
        await svc.deny(patient_principal(stranger), grant.id)


INTERLEAVED_CASES = [
    # (loser, winner, status and event the winner leaves behind)
    ("deny", "approve", GrantStatus.ACTIVE, "GRANT_APPROVED"),
    ("approve", "deny", GrantStatus.REVOKED, "GRANT_DENIED"),
]


@pytest.mark.parametrize("loser,winner,final,event", INTERLEAVED_CASES)
@pytest.mark.asyncio
async def test_decision_racing_a_committed_one_is_rejected(session_factory, world, monkeypatch, loser, winner, final, event):
    async with session_factory() as s:
        grant, _ = await _request(s, world)
        grant_id = grant.id
    patient = patient_principal(world["patient"])

    async with session_factory() as s_loser, session_factory() as s_winner:
        losing = AuthorizationService(s_loser)
        read = losing._owned

        async def read_then_let_winner_commit(principal, gid):
            seen = await read(principal, gid)
            assert seen.status == GrantStatus.PENDING
            await getattr(AuthorizationService(s_winner), winner)(patient, gid)
            return seen

        monkeypatch.setattr(losing, "_owned", read_then_let_winner_commit)
        with pytest.raises(InvalidState):
            await getattr(losing, loser)(patient, grant_id)

    async with session_factory() as s:
        stored = await GrantRepository(s).get(grant_id)
        assert stored.status == final
        events = (await s.execute(select(EventOutbox.event_type))).scalars().all()
    assert sorted(events) == sorted(["GRANT_REQUESTED", event])


@pytest.mark.asyncio
async def test_revoke_after_committed_approval_sees_fresh_state(session_factory, world):
    async with session_factory() as s1:
        grant, _ = await _request(s1, world)
        grant_id = grant.id
    patient = patient_principal(world["patient"])

    async with session_factory() as s1, session_factory() as s2:
        stale = await GrantRepository(s2).get(grant_id)
        assert stale.status == GrantStatus.PENDING
        await AuthorizationService(s1).approve(patient, grant_id)
        # a fresh read turns the deny into a revocation of the active grant
        revoked, previous = await AuthorizationService(s2).deny(patient, grant_id)
        assert previous == GrantStatus.ACTIVE
        assert revoked.status == GrantStatus.REVOKED
        events = (await s2.execute(select(EventOutbox.event_type))).scalars().all()
    assert "GRANT_REVOKED" in events and "GRANT_DENIED" not in events


@pytest.mark.asyncio
async def test_sweep_persists_expiry_and_history_reflects_it(session, world):
    grant, _ = await _request(session, world, timeWindowHours=1)
    svc = AuthorizationService(session)
    patient = patient_principal(world["patient"])
    await svc.approve(patient, grant.id)
    later = utcnow() + timedelta(hours=2)

    history = await svc.history_for_patient(patient.user_id, status=GrantStatus.EXPIRED, at=later)
    assert [g.id for g in history] == [grant.id]
    assert await svc.active_for_patient(patient.user_id, at=later) == []

    assert await svc.expire_stale(at=later) == 1
    assert await svc.expire_stale(at=later) == 0
    stored = (await session.execute(
        select(AuthorizationGrant.status).where(AuthorizationGrant.id == grant.id)
    )).scalar_one()
    assert stored == GrantStatus.EXPIRED


@pytest.mark.parametrize("src", list(GrantStatus))
def test_terminal_statuses_have_no_way_out(src):
    allowed = {dst for dst in GrantStatus if can_transition(src, dst)}
    if src in TERMINAL_STATUSES:
        assert allowed == set()
    else:
        assert GrantStatus.REVOKED in allowed and GrantStatus.EXPIRED in allowed
    assert can_transition(src, GrantStatus.ACTIVE) == (src == GrantStatus.PENDING)


@pytest.mark.asyncio
async def test_approving_a_lapsed_request_reports_expired(session, world):
    grant, _ = await _request(session, world)
    grant.expires_at = utcnow() - timedelta(minutes=1)
    await session.commit()

    with pytest.raises(InvalidState, match="EXPIRED"):
        await AuthorizationService(session).approve(patient_principal(world["patient"]), grant.id)
