import uuid
import logging
from typing import Sequence
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from consentgate.core.base import utcnow
from consentgate.core.errors import NotFound, InvalidState
from consentgate.core.security import Principal
from consentgate.modules.audit.service import AuditService
from consentgate.modules.authorizations.access import require_access
from consentgate.modules.authorizations.models import AccessScope
from consentgate.modules.directory.repository import DirectoryRepository
from consentgate.modules.encounters.models import Encounter, Prescription, VALID_NEXT
from consentgate.modules.encounters.repository import EncounterRepository
from consentgate.modules.encounters.schemas import EncounterCreate, PrescriptionCreate, PrescriptionStatusChange

log = logging.getLogger(__name__)

class EncounterService:
    """Clinical records. Every entry point goes through require_access before touching rows."""

    def __init__(self, session: AsyncSession):
        self.s = session
        self.repo = EncounterRepository(session)
        self.audit = AuditService(session)

    async def _refresh(self, ok: bool, *objs) -> None:
        # a failed audit write rolls back and expires everything loaded
        if not ok:
            for obj in objs:
                await self.s.refresh(obj)

    async def _load_encounter(self, encounter_id: uuid.UUID) -> Encounter:
        enc = await self.repo.get_encounter(encounter_id)
        if not enc:
            raise NotFound("Encounter not found")
        return enc

    async def create_encounter(self, principal: Principal, payload: EncounterCreate,
                               request: Request | None = None) -> tuple[Encounter, Sequence[Prescription]]:
        if not await DirectoryRepository(self.s).get_patient(payload.patient_id):
            raise NotFound("Patient not found")
        decision = await require_access(self.s, principal, payload.patient_id, principal.org_id,
                                        AccessScope.CREATE_ENCOUNTERS)
        enc = await self.repo.add_encounter(
            principal.org_id,
            patient_id=payload.patient_id,
            attending_practitioner_id=principal.user_id,
            authorization_grant_id=decision.grant_id,
            encounter_type=payload.encounter_type,
            encounter_date=payload.encounter_date or utcnow(),
            chief_complaint=payload.chief_complaint,
            diagnosis=payload.diagnosis,
            notes=payload.notes,
            vitals=(payload.vitals.model_dump(by_alias=True, exclude_none=True) if payload.vitals else None),
        )
        prescriptions = [await self._add_prescription(principal, enc, p) for p in payload.prescriptions]
        await self.s.commit()
        log.info("Encounter %s created for patient %s (grant %s)", enc.id, enc.patient_id, decision.grant_id)

        ok = await self.audit.log(principal.org_id, principal.user_id, "ENCOUNTER_CREATED", "encounter", str(enc.id),
                                  request=request, patient_id=payload.patient_id,
                                  details={"grantId": str(decision.grant_id) if decision.grant_id else None,
                                           "prescriptions": len(prescriptions)})
        await self._refresh(ok, enc, *prescriptions)
        return enc, prescriptions

    async def _add_prescription(self, principal: Principal, enc: Encounter, p: PrescriptionCreate) -> Prescription:
        return await self.repo.add_prescription(
            enc.org_id,
            encounter_id=enc.id,
            patient_id=enc.patient_id,
            prescribing_practitioner_id=principal.user_id,
            **p.model_dump(),
        )

    async def get_encounter(self, principal: Principal, encounter_id: uuid.UUID,
                            request: Request | None = None) -> tuple[Encounter, Sequence[Prescription]]:
        enc = await self._load_encounter(encounter_id)
        decision = await require_access(self.s, principal, enc.patient_id, principal.org_id,
                                        AccessScope.VIEW_MEDICAL_HISTORY,
                                        attending_practitioner_id=enc.attending_practitioner_id)
        prescriptions = await self.repo.prescriptions_for_encounter(enc.id)
        ok = await self.audit.log(principal.org_id, principal.user_id, "ENCOUNTER_VIEWED", "encounter", str(enc.id),
                                  request=request, patient_id=enc.patient_id, details={"basis": decision.basis})
        await self._refresh(ok, enc, *prescriptions)
        return enc, prescriptions

    async def list_encounters(self, principal: Principal, patient_id: uuid.UUID, limit: int = 50,
                              request: Request | None = None) -> Sequence[Encounter]:
        decision = await require_access(self.s, principal, patient_id, principal.org_id, AccessScope.VIEW_MEDICAL_HISTORY)
        items = await self.repo.list_encounters(patient_id, limit)
        ok = await self.audit.log(principal.org_id, principal.user_id, "MEDICAL_HISTORY_VIEWED", "patient", str(patient_id),
                                  request=request, patient_id=patient_id,
                                  details={"basis": decision.basis, "count": len(items)})
        await self._refresh(ok, *items)
        return items

    async def add_prescription(self, principal: Principal, encounter_id: uuid.UUID, payload: PrescriptionCreate,
                               request: Request | None = None) -> Prescription:
        enc = await self._load_encounter(encounter_id)
        await require_access(self.s, principal, enc.patient_id, principal.org_id, AccessScope.CREATE_ENCOUNTERS,
                             attending_practitioner_id=enc.attending_practitioner_id)
        rx = await self._add_prescription(principal, enc, payload)
        await self.s.commit()
        ok = await self.audit.log(principal.org_id, principal.user_id, "PRESCRIPTION_CREATED", "prescription", str(rx.id),
                                  request=request, patient_id=enc.patient_id, details={"encounterId": str(enc.id)})
        await self._refresh(ok, rx)
        return rx

    async def list_prescriptions(self, principal: Principal, patient_id: uuid.UUID, limit: int = 50,
                                 request: Request | None = None) -> Sequence[Prescription]:
        decision = await require_access(self.s, principal, patient_id, principal.org_id, AccessScope.VIEW_PRESCRIPTIONS)
        items = await self.repo.list_prescriptions(patient_id, limit)
        ok = await self.audit.log(principal.org_id, principal.user_id, "PRESCRIPTIONS_VIEWED", "patient", str(patient_id),
                                  request=request, patient_id=patient_id,
                                  details={"basis": decision.basis, "count": len(items)})
        await self._refresh(ok, *items)
        return items

    async def change_prescription_status(self, principal: Principal, prescription_id: uuid.UUID,
                                         payload: PrescriptionStatusChange,
                                         request: Request | None = None) -> Prescription:
        rx = await self.repo.get_prescription(prescription_id)
        if not rx:
            raise NotFound("Prescription not found")
        await require_access(self.s, principal, rx.patient_id, principal.org_id, AccessScope.VIEW_PRESCRIPTIONS)
        if payload.status not in VALID_NEXT[rx.status]:
            raise InvalidState(f"Cannot move prescription from {rx.status.value} to {payload.status.value}")
        previous = rx.status
        ok = await self.repo.transition_prescription(rx.id, from_status=previous, to=payload.status,
                                                     at=utcnow(), by=principal.user_id)
        if not ok:
            await self.s.rollback()
            raise InvalidState("Cannot change prescription status: it was changed concurrently")
        await self.s.commit()
        await self.s.refresh(rx)
        # snapshot before the audit write; a failed write expires loaded rows
        rx_id, patient_id = rx.id, rx.patient_id
        ok = await self.audit.log(principal.org_id, principal.user_id, f"PRESCRIPTION_{payload.status.value}",
                                  "prescription", str(rx_id), request=request, patient_id=patient_id,
                                  details={"previousStatus": previous.value, "notes": payload.notes})
        await self._refresh(ok, rx)
        return rx
