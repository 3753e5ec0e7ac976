import uuid
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from consentgate.core.db import get_session
from consentgate.core.security import Principal, get_principal, require_roles, DOCTOR, PHARMACIST
from consentgate.modules.encounters.service import EncounterService
from consentgate.modules.encounters.schemas import (
    EncounterCreate, EncounterOut, EncounterDetailOut,
    PrescriptionCreate, PrescriptionOut, PrescriptionStatusChange,
)

router = APIRouter()

def svc(s: AsyncSession = Depends(get_session)) -> EncounterService: return EncounterService(s)

def _detail(enc, prescriptions) -> EncounterDetailOut:
    base = EncounterOut.model_validate(enc).model_dump()
    return EncounterDetailOut(**base, prescriptions=[PrescriptionOut.model_validate(p) for p in prescriptions])

@router.post("/encounters", response_model=EncounterDetailOut, status_code=201)
async def create_encounter(
    payload: EncounterCreate,
    request: Request,
    principal: Principal = Depends(require_roles(DOCTOR)),
    service: EncounterService = Depends(svc),
):
    enc, prescriptions = await service.create_encounter(principal, payload, request=request)
    return _detail(enc, prescriptions)

@router.get("/encounters/{encounter_id}", response_model=EncounterDetailOut)
async def get_encounter(
    encounter_id: uuid.UUID,
    request: Request,
    principal: Principal = Depends(get_principal),
    service: EncounterService = Depends(svc),
):
    enc, prescriptions = await service.get_encounter(principal, encounter_id, request=request)
    return _detail(enc, prescriptions)

@router.get("/patients/{patient_id}/encounters", response_model=list[EncounterOut])
async def list_encounters(
    patient_id: uuid.UUID,
    request: Request,
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(get_principal),
    service: EncounterService = Depends(svc),
):
    return await service.list_encounters(principal, patient_id, limit, request=request)

@router.post("/encounters/{encounter_id}/prescriptions", response_model=PrescriptionOut, status_code=201)
async def add_prescription(
    encounter_id: uuid.UUID,
    payload: PrescriptionCreate,
    request: Request,
    principal: Principal = Depends(require_roles(DOCTOR)),
    service: EncounterService = Depends(svc),
):
    return await service.add_prescription(principal, encounter_id, payload, request=request)

@router.get("/patients/{patient_id}/prescriptions", response_model=list[PrescriptionOut])
async def list_prescriptions(
    patient_id: uuid.UUID,
    request: Request,
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(get_principal),
    service: EncounterService = Depends(svc),
):
    return await service.list_prescriptions(principal, patient_id, limit, request=request)

@router.patch("/prescriptions/{prescription_id}/status", response_model=PrescriptionOut)
async def change_prescription_status(
    prescription_id: uuid.UUID,
    payload: PrescriptionStatusChange,
    request: Request,
    principal: Principal = Depends(require_roles(PHARMACIST)),
    service: EncounterService = Depends(svc),
):
    return await service.change_prescription_status(principal, prescription_id, payload, request=request)
