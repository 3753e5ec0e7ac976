import uuid
from datetime import datetime
from consentgate.core.schemas import CamelModel

class AuditEventOut(CamelModel):
    id: uuid.UUID
    org_id: uuid.UUID
    actor_user_id: uuid.UUID
    action: str
    resource_type: str
    resource_id: str
    patient_id: uuid.UUID | None
    purpose: str | None
    success: bool
    occurred_at: datetime
