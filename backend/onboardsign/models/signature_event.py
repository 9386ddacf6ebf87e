from uuid import UUID

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from onboardsign.models.base import TimestampedModel, UUIDModel


class SignatureEventReceipt(UUIDModel, TimestampedModel, table=True):
    """Ledger of applied webhook events, keyed by request id, type and provider time."""

    __tablename__ = "signature_events"
    __table_args__ = (
        UniqueConstraint(
            "signature_request_id",
            "event_type",
            "event_time",
            name="uq_signature_events_request_type_time",
        ),
    )

    signature_request_id: str = Field(index=True, max_length=64)
    event_type: str = Field(max_length=64)
    event_time: str = Field(max_length=32)
    document_id: UUID | None = Field(default=None, foreign_key="documents.id", index=True)
    outcome: str = Field(max_length=32)
