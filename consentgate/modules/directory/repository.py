import uuid
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from consentgate.modules.directory.models import Organization, Practitioner, Patient

class DirectoryRepository:
    def __init__(self, session: AsyncSession):
        self.s = session

    async def add_organization(self, **data) -> Organization:
        obj = Organization(**data); self.s.add(obj); await self.s.flush(); return obj

    async def get_organization(self, org_id: uuid.UUID) -> Organization | None:
        r = await self.s.execute(select(Organization).where(Organization.id == org_id, Organization.deleted_at.is_(None)))
        return r.scalar_one_or_none()

    async def add_practitioner(self, org_id: uuid.UUID, **data) -> Practitioner:
        obj = Practitioner(org_id=org_id, **data); self.s.add(obj); await self.s.flush(); return obj

    async def get_practitioner(self, practitioner_id: uuid.UUID) -> Practitioner | None:
        r = await self.s.execute(select(Practitioner).where(Practitioner.id == practitioner_id, Practitioner.deleted_at.is_(None)))
        return r.scalar_one_or_none()

    async def add_patient(self, **data) -> Patient:
        obj = Patient(**data); self.s.add(obj); await self.s.flush(); return obj

    async def get_patient(self, patient_id: uuid.UUID) -> Patient | None:
        r = await self.s.execute(select(Patient).where(Patient.id == patient_id, Patient.deleted_at.is_(None)))
        return r.scalar_one_or_none()

    async def get_patient_by_digital_id(self, digital_identifier: str) -> Patient | None:
        r = await self.s.execute(select(Patient).where(
            Patient.digital_identifier == digital_identifier,
            Patient.deleted_at.is_(None),
        ))
        return r.scalar_one_or_none()
