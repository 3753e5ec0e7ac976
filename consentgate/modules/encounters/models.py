import enum
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, JSON, Enum, ForeignKey
from consentgate.core.base import Base, TimestampedTenantMixin, UTCDateTime, utcnow

class EncounterType(str, enum.Enum):
    ROUTINE = "ROUTINE"
    EMERGENCY = "EMERGENCY"
    FOLLOW_UP = "FOLLOW_UP"
    CONSULTATION = "CONSULTATION"

class PrescriptionStatus(str, enum.Enum):
    ISSUED = "ISSUED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"

VALID_NEXT: dict[PrescriptionStatus, set[PrescriptionStatus]] = {
    PrescriptionStatus.ISSUED: {PrescriptionStatus.FILLED, PrescriptionStatus.CANCELLED},
    PrescriptionStatus.FILLED: set(),
    PrescriptionStatus.CANCELLED: set(),
}

class Encounter(Base, TimestampedTenantMixin):
    # org_id is the facility where the encounter took place
    patient_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("patient.id"), index=True)
    attending_practitioner_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("practitioner.id"), index=True)
    authorization_grant_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("authorization_grant.id"), nullable=True)

    encounter_type: Mapped[EncounterType] = mapped_column(
        Enum(EncounterType, native_enum=False, length=16), default=EncounterType.ROUTINE
    )
    encounter_date: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, index=True)
    chief_complaint: Mapped[str | None] = mapped_column(String(500), nullable=True)
    diagnosis: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    vitals: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # {"temperature": 37.1, "bloodPressure": "120/80", ...}

class Prescription(Base, TimestampedTenantMixin):
    encounter_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("encounter.id"), index=True)
    patient_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("patient.id"), index=True)
    prescribing_practitioner_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("practitioner.id"))

    medication_name: Mapped[str] = mapped_column(String(200))
    dosage: Mapped[str] = mapped_column(String(120))
    frequency: Mapped[str] = mapped_column(String(120))
    duration_days: Mapped[int | None] = mapped_column(nullable=True)
    instructions: Mapped[str | None] = mapped_column(String(500), nullable=True)

    status: Mapped[PrescriptionStatus] = mapped_column(
        Enum(PrescriptionStatus, native_enum=False, length=16), default=PrescriptionStatus.ISSUED
    )
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    status_changed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    status_changed_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
