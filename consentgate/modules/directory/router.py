import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from consentgate.core.db import get_session
from consentgate.core.security import require_scopes
from consentgate.modules.directory.service import DirectoryService
from consentgate.modules.directory.schemas import (
    OrganizationCreate, OrganizationOut,
    PractitionerCreate, PractitionerOut,
    PatientCreate, PatientOut,
)

router = APIRouter()

def svc(s: AsyncSession = Depends(get_session)) -> DirectoryService: return DirectoryService(s)

@router.post("/organizations", response_model=OrganizationOut, status_code=201, dependencies=[Depends(require_scopes("directory:write"))])
async def create_organization(payload: OrganizationCreate, service: DirectoryService = Depends(svc)):
    return await service.add_organization(payload)

@router.get("/organizations/{organization_id}", response_model=OrganizationOut, dependencies=[Depends(require_scopes("directory:read"))])
async def get_organization(organization_id: uuid.UUID, service: DirectoryService = Depends(svc)):
    return await service.get_organization(organization_id)

@router.post("/practitioners", response_model=PractitionerOut, status_code=201, dependencies=[Depends(require_scopes("directory:write"))])
async def create_practitioner(payload: PractitionerCreate, service: DirectoryService = Depends(svc)):
    return await service.add_practitioner(payload)

@router.get("/practitioners/{practitioner_id}", response_model=PractitionerOut, dependencies=[Depends(require_scopes("directory:read"))])
async def get_practitioner(practitioner_id: uuid.UUID, service: DirectoryService = Depends(svc)):
    return await service.get_practitioner(practitioner_id)

@router.post("/patients", response_model=PatientOut, status_code=201, dependencies=[Depends(require_scopes("directory:write"))])
async def create_patient(payload: PatientCreate, service: DirectoryService = Depends(svc)):
    return await service.add_patient(payload)
