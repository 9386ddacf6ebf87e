from __future__ import annotations

from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from onboardsign.models.base import TimestampedModel, UUIDModel


class AuditRecord(UUIDModel, TimestampedModel, table=True):
    """Append-only communication record for the signature trail of a document."""

    __tablename__ = "audit_records"

    document_id: UUID | None = Field(default=None, foreign_key="documents.id", index=True)
    record_type: str = Field(index=True, max_length=64)
    recipient_email: str | None = Field(default=None)
    subject: str | None = Field(default=None)
    content: str | None = Field(default=None)
    status: str = Field(default="sent", max_length=32)
    details: dict | None = Field(default_factory=dict, sa_type=JSON)
