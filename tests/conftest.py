import os

os.environ["ENV"] = "test"
os.environ["DATABASE_DSN"] = "sqlite+aiosqlite:///./consentgate-test.db"
os.environ["EVENT_BUS_PROVIDER"] = "noop"
os.environ["OUTBOX_RELAY_ENABLED"] = "false"
os.environ["GRANT_SWEEP_ENABLED"] = "false"
os.environ["PUSH_WEBHOOK_URL"] = ""

import uuid
from datetime import timedelta
import pytest
from jose import jwt
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from consentgate.core.base import utcnow
from consentgate.core.config import settings
from consentgate.core.db import create_all
from consentgate.core.security import Principal, PATIENT, DOCTOR, PHARMACIST
from consentgate.modules.authorizations.qr import build_patient_qr
from consentgate.modules.authorizations.schemas import AccessRequestCreate
from consentgate.modules.directory.models import Organization, Practitioner, Patient, PractitionerType


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    await create_all(engine)
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    await engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
async def world(session_factory):
    """Two organizations, a doctor and a pharmacist in the first, a doctor in the second, one patient."""
    async with session_factory() as s:
        hospital = Organization(name="City Hospital", type="hospital", verified=True)
        clinic = Organization(name="Harbour Clinic", type="clinic", verified=True)
        s.add_all([hospital, clinic])
        await s.flush()
        doctor = Practitioner(org_id=hospital.id, display_name="Dr. Rivera", practitioner_type=PractitionerType.DOCTOR)
        pharmacist = Practitioner(org_id=hospital.id, display_name="P. Okafor", practitioner_type=PractitionerType.PHARMACIST)
        other_doctor = Practitioner(org_id=clinic.id, display_name="Dr. Lindqvist", practitioner_type=PractitionerType.DOCTOR)
        patient = Patient(legal_name="Sam Patel", digital_identifier="HID-0001")
        s.add_all([doctor, pharmacist, other_doctor, patient])
        await s.commit()
        return {
            "hospital": hospital, "clinic": clinic, "doctor": doctor, "pharmacist": pharmacist,
            "other_doctor": other_doctor, "patient": patient,
        }


def patient_principal(patient) -> Principal:
    return Principal(user_id=patient.id, org_id=uuid.UUID(settings.DEFAULT_ORG_ID), roles=[PATIENT])


def practitioner_principal(practitioner) -> Principal:
    role = PHARMACIST if practitioner.practitioner_type == PractitionerType.PHARMACIST else DOCTOR
    return Principal(user_id=practitioner.id, org_id=practitioner.org_id, roles=[role])


def access_request(patient, practitioner, **overrides) -> AccessRequestCreate:
    body = {
        "scannedQRData": build_patient_qr(patient.digital_identifier),
        "organizationId": str(practitioner.org_id),
        "requestingPractitionerId": str(practitioner.id),
    }
    body.update(overrides)
    return AccessRequestCreate.model_validate(body)


def token_for(principal: Principal, scopes: list[str] | None = None) -> str:
    claims = {
        "sub": str(principal.user_id),
        "org_id": str(principal.org_id),
        "roles": principal.roles,
        "scopes": scopes if scopes is not None else principal.scopes,
        "exp": utcnow() + timedelta(hours=1),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def auth(principal: Principal, scopes: list[str] | None = None) -> dict:
    return {"Authorization": f"Bearer {token_for(principal, scopes)}"}


@pytest.fixture
async def client(session_factory):
    import httpx
    from consentgate.core.db import get_session
    from consentgate.main import app

    async def _session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test/api/v1") as c:
        yield c
    app.dependency_overrides.clear()
