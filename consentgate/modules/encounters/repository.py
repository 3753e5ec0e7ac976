import uuid
from typing import Sequence
from datetime import datetime
from sqlalchemy import select, update, desc
from sqlalchemy.ext.asyncio import AsyncSession
from consentgate.modules.encounters.models import Encounter, Prescription, PrescriptionStatus

class EncounterRepository:
    def __init__(self, session: AsyncSession):
        self.s = session

    async def add_encounter(self, org_id: uuid.UUID, **data) -> Encounter:
        obj = Encounter(org_id=org_id, **data); self.s.add(obj); await self.s.flush(); return obj

    async def get_encounter(self, encounter_id: uuid.UUID) -> Encounter | None:
        r = await self.s.execute(select(Encounter).where(Encounter.id == encounter_id, Encounter.deleted_at.is_(None)))
        return r.scalar_one_or_none()

    async def list_encounters(self, patient_id: uuid.UUID, limit: int = 50) -> Sequence[Encounter]:
        r = await self.s.execute(
            select(Encounter)
            .where(Encounter.patient_id == patient_id, Encounter.deleted_at.is_(None))
            .order_by(desc(Encounter.encounter_date))
            .limit(limit)
        )
        return r.scalars().all()

    async def add_prescription(self, org_id: uuid.UUID, **data) -> Prescription:
        obj = Prescription(org_id=org_id, **data); self.s.add(obj); await self.s.flush(); return obj

    async def get_prescription(self, prescription_id: uuid.UUID) -> Prescription | None:
        r = await self.s.execute(
            select(Prescription)
            .where(Prescription.id == prescription_id, Prescription.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )
        return r.scalar_one_or_none()

    async def transition_prescription(self, prescription_id: uuid.UUID, *, from_status: PrescriptionStatus,
                                      to: PrescriptionStatus, at: datetime, by: uuid.UUID) -> bool:
        """Conditional single-row update; False when another change got there first."""
        r = await self.s.execute(
            update(Prescription)
            .where(
                Prescription.id == prescription_id,
                Prescription.status == from_status,
                Prescription.deleted_at.is_(None),
            )
            .values(status=to, status_changed_at=at, status_changed_by=by, updated_at=at,
                    version=Prescription.version + 1)
            .execution_options(synchronize_session=False)
        )
        return r.rowcount == 1

    async def prescriptions_for_encounter(self, encounter_id: uuid.UUID) -> Sequence[Prescription]:
        r = await self.s.execute(
            select(Prescription)
            .where(Prescription.encounter_id == encounter_id, Prescription.deleted_at.is_(None))
            .order_by(Prescription.issued_at)
        )
        return r.scalars().all()

    async def list_prescriptions(self, patient_id: uuid.UUID, limit: int = 50) -> Sequence[Prescription]:
        r = await self.s.execute(
            select(Prescription)
            .where(Prescription.patient_id == patient_id, Prescription.deleted_at.is_(None))
            .order_by(desc(Prescription.issued_at))
            .limit(limit)
        )
        return r.scalars().all()
