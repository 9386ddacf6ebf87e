from typing import Any, List
from uuid import UUID

from pydantic import BaseModel

from onboardsign.schemas.common import IDModel, Timestamped


class AuditRecordRead(IDModel, Timestamped):
    document_id: UUID | None
    record_type: str
    recipient_email: str | None
    subject: str | None
    content: str | None
    status: str
    details: dict[str, Any] | None


class AuditRecordList(BaseModel):
    items: List[AuditRecordRead]
    total: int
    page: int
    page_size: int
