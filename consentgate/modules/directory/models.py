import enum
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Boolean, Enum
from consentgate.core.base import Base, TimestampedMixin, TimestampedTenantMixin

class PractitionerType(str, enum.Enum):
    DOCTOR = "doctor"
    PHARMACIST = "pharmacist"

class Organization(Base, TimestampedMixin):
    name: Mapped[str] = mapped_column(String(160), index=True)
    type: Mapped[str] = mapped_column(String(32), default="hospital")  # hospital | clinic | pharmacy | laboratory
    verified: Mapped[bool] = mapped_column(Boolean, default=False)

class Practitioner(Base, TimestampedTenantMixin):
    # org_id is the organization the practitioner acts for
    display_name: Mapped[str] = mapped_column(String(160), index=True)
    practitioner_type: Mapped[PractitionerType] = mapped_column(Enum(PractitionerType, native_enum=False, length=16))
    specialty: Mapped[str | None] = mapped_column(String(120), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

class Patient(Base, TimestampedMixin):
    legal_name: Mapped[str] = mapped_column(String(200))
    digital_identifier: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    primary_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    primary_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
