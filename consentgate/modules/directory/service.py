import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from consentgate.core.errors import NotFound, InvalidState
from consentgate.modules.directory.repository import DirectoryRepository
from consentgate.modules.directory.schemas import OrganizationCreate, PractitionerCreate, PatientCreate

class DirectoryService:
    def __init__(self, s: AsyncSession):
        self.s = s
        self.repo = DirectoryRepository(s)

    async def add_organization(self, p: OrganizationCreate):
        obj = await self.repo.add_organization(**p.model_dump()); await self.s.commit(); return obj

    async def get_organization(self, org_id: uuid.UUID):
        obj = await self.repo.get_organization(org_id)
        if not obj:
            raise NotFound("Organization not found")
        return obj

    async def add_practitioner(self, p: PractitionerCreate):
        await self.get_organization(p.organization_id)
        data = p.model_dump(exclude={"organization_id"})
        obj = await self.repo.add_practitioner(p.organization_id, **data); await self.s.commit(); return obj

    async def get_practitioner(self, practitioner_id: uuid.UUID):
        obj = await self.repo.get_practitioner(practitioner_id)
        if not obj:
            raise NotFound("Practitioner not found")
        return obj

    async def add_patient(self, p: PatientCreate):
        if await self.repo.get_patient_by_digital_id(p.digital_identifier):
            raise InvalidState("Digital identifier already registered")
        obj = await self.repo.add_patient(**p.model_dump()); await self.s.commit(); return obj

    async def get_patient(self, patient_id: uuid.UUID):
        obj = await self.repo.get_patient(patient_id)
        if not obj:
            raise NotFound("Patient not found")
        return obj
