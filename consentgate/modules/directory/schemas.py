import uuid
from datetime import datetime
from pydantic import Field
from consentgate.core.schemas import CamelModel
from consentgate.modules.directory.models import PractitionerType

class OrganizationCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=160)
    type: str = Field(default="hospital", pattern="^(hospital|clinic|pharmacy|laboratory)$")
    verified: bool = False

class OrganizationOut(CamelModel):
    id: uuid.UUID
    name: str
    type: str
    verified: bool

class PractitionerCreate(CamelModel):
    organization_id: uuid.UUID
    display_name: str = Field(..., min_length=1, max_length=160)
    practitioner_type: PractitionerType
    specialty: str | None = None
    active: bool = True

class PractitionerOut(CamelModel):
    id: uuid.UUID
    organization_id: uuid.UUID = Field(validation_alias="org_id")
    display_name: str
    practitioner_type: PractitionerType
    specialty: str | None
    active: bool

class PatientCreate(CamelModel):
    legal_name: str = Field(..., min_length=1, max_length=200)
    digital_identifier: str = Field(..., min_length=4, max_length=64)
    primary_email: str | None = None
    primary_phone: str | None = None

class PatientOut(CamelModel):
    id: uuid.UUID
    legal_name: str
    digital_identifier: str
    created_at: datetime
