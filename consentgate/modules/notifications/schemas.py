import uuid
from datetime import datetime
from consentgate.core.schemas import CamelModel

class NotificationOut(CamelModel):
    id: uuid.UUID
    kind: str
    channel: str
    title: str | None
    body: str
    subject_type: str | None
    subject_id: str | None
    status: str
    created_at: datetime
    processed_at: datetime | None
