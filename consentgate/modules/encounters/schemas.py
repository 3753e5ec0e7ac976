import uuid
from datetime import datetime, timezone
from pydantic import Field, field_validator
from consentgate.core.base import utcnow
from consentgate.core.schemas import CamelModel
from consentgate.modules.encounters.models import EncounterType, PrescriptionStatus

class Vitals(CamelModel):
    temperature: float | None = Field(default=None, ge=30, le=45)  # celsius
    heart_rate: int | None = Field(default=None, ge=30, le=220)
    blood_pressure: str | None = Field(default=None, pattern=r"^\d{2,3}/\d{2,3}$")
    weight: float | None = Field(default=None, ge=0.5, le=500)  # kg
    height: float | None = Field(default=None, ge=30, le=300)  # cm

class PrescriptionCreate(CamelModel):
    medication_name: str = Field(..., min_length=1, max_length=200)
    dosage: str = Field(..., min_length=1, max_length=120)
    frequency: str = Field(..., min_length=1, max_length=120)
    duration_days: int | None = Field(default=None, ge=1, le=365)
    instructions: str | None = Field(default=None, max_length=500)

class EncounterCreate(CamelModel):
    patient_id: uuid.UUID
    encounter_type: EncounterType = EncounterType.ROUTINE
    encounter_date: datetime | None = None
    chief_complaint: str | None = Field(default=None, max_length=500)
    diagnosis: str | None = Field(default=None, max_length=500)
    notes: str | None = Field(default=None, max_length=5000)
    vitals: Vitals | None = None
    prescriptions: list[PrescriptionCreate] = Field(default_factory=list)

    @field_validator("encounter_date")
    @classmethod
    def _not_in_future(cls, v: datetime | None):
        if v is None:
            return v
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if v > utcnow():
            raise ValueError("encounterDate cannot be in the future")
        return v

class PrescriptionStatusChange(CamelModel):
    status: PrescriptionStatus
    notes: str | None = Field(default=None, max_length=500)

class PrescriptionOut(CamelModel):
    id: uuid.UUID
    encounter_id: uuid.UUID
    patient_id: uuid.UUID
    prescribing_practitioner_id: uuid.UUID
    medication_name: str
    dosage: str
    frequency: str
    duration_days: int | None
    instructions: str | None
    status: PrescriptionStatus
    issued_at: datetime
    status_changed_at: datetime | None

class EncounterOut(CamelModel):
    id: uuid.UUID
    org_id: uuid.UUID
    patient_id: uuid.UUID
    attending_practitioner_id: uuid.UUID
    authorization_grant_id: uuid.UUID | None
    encounter_type: EncounterType
    encounter_date: datetime
    chief_complaint: str | None
    diagnosis: str | None
    notes: str | None
    vitals: dict | None
    created_at: datetime

class EncounterDetailOut(EncounterOut):
    prescriptions: list[PrescriptionOut] = []
