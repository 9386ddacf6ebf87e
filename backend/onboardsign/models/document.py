from datetime import datetime
from enum import Enum

from sqlalchemy import JSON
from sqlmodel import Field

from onboardsign.models.base import TimestampedModel, UUIDModel


class SignatureStatus(str, Enum):
    NOT_SENT = "not_sent"
    PENDING = "pending"
    SIGNED = "signed"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_SIGNATURE_STATUSES


TERMINAL_SIGNATURE_STATUSES = frozenset(
    {
        SignatureStatus.SIGNED,
        SignatureStatus.DECLINED,
        SignatureStatus.CANCELLED,
        SignatureStatus.EXPIRED,
    }
)


class Document(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "documents"

    name: str
    owner_id: str = Field(index=True, max_length=64)
    owner_email: str | None = Field(default=None)
    file_url: str | None = Field(default=None)

    signature_required: bool = Field(default=False)
    signature_status: SignatureStatus = Field(default=SignatureStatus.NOT_SENT, index=True)
    signature_request_id: str | None = Field(default=None, unique=True, index=True, max_length=64)
    signature_metadata: dict | None = Field(default_factory=dict, sa_type=JSON)
    signed_at: datetime | None = Field(default=None)
    last_event_at: datetime | None = Field(default=None)

    # Optimistic concurrency counter, bumped by every conditional update.
    version: int = Field(default=1, nullable=False)
